from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional, Sequence

from app.errors import ConfigurationError, PipelineCancelled, TrackHeatError
from app.logging import configure_logging
from app.settings import Settings, load_settings
from core.pipeline import HeatmapPipeline
from ingest.sources import supported_formats
from viz.palette import PALETTES

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trackheat",
        description="Render a heatmap (and optionally a frame stream) from GPS tracks",
    )
    parser.add_argument("min_lat", type=float, help="Southern edge of the region")
    parser.add_argument("min_lon", type=float, help="Western edge of the region")
    parser.add_argument("max_lat", type=float, help="Northern edge of the region")
    parser.add_argument("max_lon", type=float, help="Eastern edge of the region")
    parser.add_argument("width", type=int, help="Output width in pixels")
    parser.add_argument(
        "input_dir",
        help=f"Directory of track files ({', '.join(supported_formats())}, optionally gzipped)",
    )
    parser.add_argument("--output", "-o", help="PNG path for the static heatmap")
    parser.add_argument(
        "--ppm-stream", help="Write raw PPM frames here (file, named pipe or '-')"
    )
    parser.add_argument("--frame-rate", type=float, help="Frames per second of output video")
    parser.add_argument("--video-seconds", type=float, help="Length of the output video")
    parser.add_argument("--intensity", type=float, help="Per-hit intensity constant")
    parser.add_argument("--palette", choices=sorted(PALETTES), help="Color palette")
    parser.add_argument(
        "--normalization",
        choices=["running", "fixed"],
        help="Normalize by the max so far (running) or by the final max (fixed)",
    )
    parser.add_argument(
        "--clip-segments",
        action="store_true",
        default=None,
        help="Clip segments leaving the region instead of dropping them",
    )
    parser.add_argument("--workers", type=int, help="Decode/rasterize threads")
    parser.add_argument(
        "--recursive", action="store_true", default=None, help="Scan subdirectories"
    )
    parser.add_argument("--log-level", help="Logging level (default INFO)")
    parser.add_argument("--log-dir", help="Also log to a rotating file in this directory")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    return load_settings(
        min_lat=args.min_lat,
        min_lon=args.min_lon,
        max_lat=args.max_lat,
        max_lon=args.max_lon,
        width=args.width,
        input_dir=args.input_dir,
        output=args.output,
        ppm_stream=args.ppm_stream,
        frame_rate=args.frame_rate,
        video_seconds=args.video_seconds,
        intensity=args.intensity,
        palette=args.palette,
        normalization=args.normalization,
        clip_segments=args.clip_segments,
        workers=args.workers,
        recursive=args.recursive,
        log_level=args.log_level,
        log_dir=args.log_dir,
    )


def _install_signal_handlers(cancel: threading.Event) -> None:
    def handler(signum, frame) -> None:
        LOGGER.warning("Received signal %s, stopping", signum)
        cancel.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = settings_from_args(args)
    except ConfigurationError as exc:
        print(f"trackheat: configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(settings.log_level, settings.log_dir)
    LOGGER.info(
        "Starting trackheat",
        extra={"input_dir": str(settings.input_dir), "width": settings.width},
    )

    cancel = threading.Event()
    _install_signal_handlers(cancel)
    try:
        report = HeatmapPipeline(settings, cancel_event=cancel).run()
    except ConfigurationError as exc:
        LOGGER.error("Configuration error: %s", exc)
        return EXIT_CONFIG
    except PipelineCancelled:
        LOGGER.warning("Render cancelled")
        return EXIT_CANCELLED
    except TrackHeatError as exc:
        LOGGER.error("Render failed: %s", exc)
        return EXIT_FAILURE

    summary: List[str] = [f"{report.tracks_rendered} track(s)"]
    if report.decode_failures:
        summary.append(f"{len(report.decode_failures)} skipped")
    if report.image_path is not None:
        summary.append(f"image {report.image_path}")
    if report.frames_written:
        summary.append(f"{report.frames_written} frame(s)")
    LOGGER.info("Done: %s", ", ".join(summary))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
