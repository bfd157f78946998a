"""Output sinks: the static PNG and the raw PPM frame stream."""
from __future__ import annotations

import logging
import queue
import sys
import threading
from pathlib import Path
from typing import BinaryIO, Optional, Union

import cv2
import numpy as np

from app.errors import PipelineCancelled, SinkError

logger = logging.getLogger(__name__)

_STOP = object()
_POLL_SECONDS = 0.1
_ABORT_WAIT_SECONDS = 2.0


def write_image(pixels: np.ndarray, output_path: Path) -> Path:
    """Encode an RGB ``(h, w, 3)`` grid to an image file (format from suffix)."""
    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise ValueError(f"expected an (h, w, 3) RGB grid, got shape {pixels.shape}")
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    bgr = cv2.cvtColor(np.ascontiguousarray(pixels, dtype=np.uint8), cv2.COLOR_RGB2BGR)
    try:
        ok = cv2.imwrite(str(output_path), bgr)
    except cv2.error as exc:
        raise SinkError(f"Failed to write heatmap to {output_path}: {exc}") from exc
    if not ok:
        raise SinkError(f"Failed to write heatmap to {output_path}")
    return output_path


def encode_ppm_frame(pixels: np.ndarray) -> bytes:
    """Binary PPM (P6): ``width height 255`` header, then row-major RGB bytes."""
    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise ValueError(f"expected an (h, w, 3) RGB grid, got shape {pixels.shape}")
    height, width = pixels.shape[:2]
    header = f"P6\n{width} {height}\n255\n".encode("ascii")
    return header + np.ascontiguousarray(pixels, dtype=np.uint8).tobytes()


class FrameStreamSink:
    """
    Writes encoded frames, in order, to a file, named pipe or stdout.

    Frames pass through a queue of capacity one to a writer thread. When the
    reading end is slow, ``submit`` blocks instead of buffering, so at most
    one frame waits while another is being written. Each frame goes out in a
    single ``write`` followed by ``flush``.

    A blocked ``submit`` gives up with :class:`PipelineCancelled` once
    ``cancel_event`` is set, even if the reader never drains the stream.
    """

    def __init__(
        self,
        destination: Union[str, Path, BinaryIO],
        cancel_event: Optional[threading.Event] = None,
    ):
        self._cancel_event = cancel_event
        self._owns_stream = False
        if isinstance(destination, (str, Path)):
            self.name = str(destination)
            if self.name == "-":
                self._stream: BinaryIO = sys.stdout.buffer
            else:
                try:
                    # opening a FIFO blocks until a reader attaches
                    self._stream = open(destination, "wb")
                except OSError as exc:
                    raise SinkError(f"Could not open frame stream {destination}: {exc}") from exc
                self._owns_stream = True
        else:
            self.name = getattr(destination, "name", repr(destination))
            self._stream = destination

        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=1)
        self._aborted = threading.Event()
        self._error: Optional[BaseException] = None
        self._closed = False
        self.frames_written = 0
        self._thread = threading.Thread(
            target=self._run, name="frame-stream-writer", daemon=True
        )
        self._thread.start()

    def __enter__(self) -> "FrameStreamSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            if self._aborted.is_set():
                continue
            try:
                self._stream.write(item)  # type: ignore[arg-type]
                self._stream.flush()
            except (OSError, ValueError) as exc:
                self._error = exc
                logger.error("Frame stream %s failed: %s", self.name, exc)
                return
            self.frames_written += 1

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise SinkError(
                f"Frame stream {self.name} failed after {self.frames_written} frame(s): {self._error}"
            ) from self._error

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def _put(self, item: object, interruptible: bool = False) -> bool:
        while self._thread.is_alive():
            try:
                self._queue.put(item, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                if interruptible and self._cancelled():
                    raise PipelineCancelled(
                        f"Frame stream {self.name} cancelled while the reader was stalled"
                    ) from None
        return False

    def submit(self, frame: bytes) -> None:
        """Queue one encoded frame; blocks while the previous one is pending."""
        if self._closed:
            raise SinkError(f"Frame stream {self.name} is closed")
        self._raise_if_failed()
        if not self._put(frame, interruptible=True):
            self._raise_if_failed()
            raise SinkError(f"Frame stream {self.name} writer stopped")

    def close(self) -> None:
        """Write out pending frames, then release the destination."""
        if self._closed:
            return
        self._closed = True
        self._put(_STOP)
        self._thread.join()
        self._release()
        self._raise_if_failed()
        logger.info("Frame stream %s closed after %d frame(s)", self.name, self.frames_written)

    def abort(self, timeout: float = _ABORT_WAIT_SECONDS) -> None:
        """Drop pending frames and release the destination.

        A frame already being written gets ``timeout`` seconds to finish, so a
        live consumer never sees a partial frame. If the reader has stalled the
        writer thread is left blocked (it is a daemon) and the destination is
        not touched, since closing it would wait on the same write.
        """
        if self._closed:
            return
        self._closed = True
        self._aborted.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        # drained above and the writer never puts, so this cannot block
        self._queue.put_nowait(_STOP)
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning(
                "Frame stream %s abandoned mid-frame after %d frame(s); reader is not draining",
                self.name,
                self.frames_written,
            )
            return
        self._release()
        logger.warning("Frame stream %s aborted after %d frame(s)", self.name, self.frames_written)

    def _release(self) -> None:
        try:
            if self._owns_stream:
                self._stream.close()
            else:
                self._stream.flush()
        except (OSError, ValueError) as exc:
            if self._error is None:
                self._error = exc
