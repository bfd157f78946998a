"""
Render pipeline: track files in, heatmap image and/or frame stream out.

Static runs decode and rasterize files on a thread pool straight into the
shared buffer. Streaming runs decode everything first, order all points on
one timeline, then rasterize frame by frame, handing each frame to the
stream sink before drawing the next batch.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from app.errors import DecodeError, NoTracksError, PipelineCancelled
from app.logging import log_event
from app.settings import Settings
from core.buffer import AccumulationBuffer
from core.models import Track
from core.projection import GeoProjector
from core.rasterizer import PathWalker, TrackRasterizer
from core.timeline import AnimationTimeline, Frame
from ingest.scan import iter_track_files
from ingest.sources import decode_track
from viz.palette import ColorMapper, get_palette
from viz.sink import FrameStreamSink, encode_ppm_frame, write_image

logger = logging.getLogger(__name__)

Decoder = Callable[[Path], Track]


@dataclass
class RenderReport:
    """What a run produced."""

    width: int
    height: int
    files_seen: int = 0
    tracks_rendered: int = 0
    points: int = 0
    pixel_hits: int = 0
    decode_failures: Dict[str, str] = field(default_factory=dict)
    frames_written: int = 0
    image_path: Optional[Path] = None
    max_value: float = 0.0


class HeatmapPipeline:
    """Wires projector, buffer, rasterizer, color mapper and sinks for one run."""

    def __init__(
        self,
        settings: Settings,
        cancel_event: Optional[threading.Event] = None,
        decoder: Decoder = decode_track,
    ):
        self.settings = settings
        self.cancel_event = cancel_event or threading.Event()
        self.decoder = decoder
        self.projector = GeoProjector(settings.bounds(), settings.width)
        self.mapper = ColorMapper(get_palette(settings.palette), settings.normalization)
        self.buffer = self._new_buffer()
        self.rasterizer = self._rasterizer_for(self.buffer)

    def _new_buffer(self) -> AccumulationBuffer:
        return AccumulationBuffer(self.projector.width, self.projector.height)

    def _rasterizer_for(self, buffer: AccumulationBuffer) -> TrackRasterizer:
        return TrackRasterizer(
            self.projector,
            buffer,
            intensity=self.settings.intensity,
            clip_segments=self.settings.clip_segments,
        )

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise PipelineCancelled("render cancelled")

    def run(self, paths: Optional[Sequence[Path]] = None) -> RenderReport:
        if paths is None:
            paths = iter_track_files(self.settings.input_dir, recursive=self.settings.recursive)
        report = RenderReport(
            width=self.projector.width, height=self.projector.height, files_seen=len(paths)
        )
        logger.info("Rendering %d file(s) at %dx%d", len(paths), report.width, report.height)

        if self.settings.ppm_stream is not None:
            tracks = self._ingest(paths, report, rasterize=False)
            self._stream(tracks, report)
        else:
            self._ingest(paths, report, rasterize=True)

        if self.settings.output is not None:
            self._write_static(report)

        log_event(
            logger,
            "render_complete",
            tracks=report.tracks_rendered,
            failures=len(report.decode_failures),
            frames=report.frames_written,
            image=report.image_path,
        )
        return report

    # region Ingestion
    def _load(self, path: Path, rasterize: bool) -> Tuple[Track, int]:
        self._check_cancelled()
        track = self.decoder(path)
        hits = self.rasterizer.rasterize(track) if rasterize else 0
        return track, hits

    def _ingest(self, paths: Sequence[Path], report: RenderReport, rasterize: bool) -> List[Track]:
        """Decode ``paths`` in parallel; returns tracks in input order.

        With ``rasterize`` the workers also draw their track and the tracks
        are not kept.
        """
        slots: List[Optional[Track]] = [None] * len(paths)
        pool = ThreadPoolExecutor(
            max_workers=self.settings.workers, thread_name_prefix="ingest"
        )
        try:
            futures: Dict[Future, int] = {
                pool.submit(self._load, Path(path), rasterize): index
                for index, path in enumerate(paths)
            }
            for future in as_completed(futures):
                index = futures[future]
                path = Path(paths[index])
                try:
                    track, hits = future.result()
                except DecodeError as exc:
                    logger.warning("Skipping %s: %s", path, exc.reason)
                    report.decode_failures[str(path)] = exc.reason
                    continue
                report.tracks_rendered += 1
                report.points += len(track.points)
                report.pixel_hits += hits
                if not rasterize:
                    slots[index] = track
                logger.debug("Loaded %s (%s, %d points)", path, track.name, len(track.points))
                self._check_cancelled()
        except BaseException:
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        pool.shutdown(wait=True)

        log_event(
            logger,
            "ingest_complete",
            files=len(paths),
            tracks=report.tracks_rendered,
            failures=len(report.decode_failures),
        )
        if report.tracks_rendered == 0:
            raise NoTracksError(f"no tracks could be decoded from {len(paths)} file(s)")
        return [track for track in slots if track is not None]
    # endregion

    # region Streaming
    def _reference_max(self, tracks: Sequence[Track]) -> float:
        """Final-buffer max for fixed normalization, from a scratch render."""
        scratch = self._rasterizer_for(self._new_buffer())
        for track in tracks:
            self._check_cancelled()
            scratch.rasterize(track)
        return scratch.buffer.max_value()

    def _stream(self, tracks: List[Track], report: RenderReport) -> None:
        timeline = AnimationTimeline.from_tracks(tracks)
        frame_count = self.settings.frame_count()
        batches = timeline.partition(frame_count)
        if self.mapper.normalization == "fixed":
            self.mapper.set_reference(self._reference_max(tracks))

        walkers: List[PathWalker] = [self.rasterizer.walker(n) for n in timeline.track_lengths]
        logger.info(
            "Streaming %d frame(s) over %.1fs of recordings to %s",
            frame_count,
            timeline.span,
            self.settings.ppm_stream,
        )

        sink = FrameStreamSink(self.settings.ppm_stream, cancel_event=self.cancel_event)
        try:
            for index, batch in enumerate(batches):
                self._check_cancelled()
                for timed in batch:
                    report.pixel_hits += walkers[timed.track_index].advance(timed.point)
                self._emit(sink, Frame(index=index, snapshot=self.buffer.snapshot()))
        except BaseException:
            sink.abort()
            report.frames_written = sink.frames_written
            raise
        sink.close()
        report.frames_written = sink.frames_written

    def _emit(self, sink: FrameStreamSink, frame: Frame) -> None:
        pixels = self.mapper.colorize_grid(frame.snapshot)
        sink.submit(encode_ppm_frame(pixels))
        logger.debug("Frame %d queued (max %.3f)", frame.index, frame.max_value)
    # endregion

    def _write_static(self, report: RenderReport) -> None:
        snapshot = self.buffer.snapshot()
        report.max_value = float(snapshot.max())
        if self.mapper.normalization == "fixed" and self.mapper.reference is None:
            self.mapper.set_reference(report.max_value)
        pixels = self.mapper.colorize_grid(snapshot)
        report.image_path = write_image(pixels, self.settings.output)
        logger.info(
            "Heatmap written to %s (%d lit pixels, max %.3f)",
            report.image_path,
            int(np.count_nonzero(snapshot)),
            report.max_value,
        )

