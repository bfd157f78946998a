from __future__ import annotations

from pathlib import Path


class TrackHeatError(Exception):
    """Base error for trackheat."""


class ConfigurationError(TrackHeatError):
    pass


class DecodeError(TrackHeatError):
    """Raised when a track file cannot be turned into a track."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


class NoTracksError(TrackHeatError):
    pass


class SinkError(TrackHeatError):
    pass


class PipelineCancelled(TrackHeatError):
    pass
