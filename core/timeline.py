from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence

import numpy as np

from app.errors import ConfigurationError, NoTracksError
from core.models import GeoPoint, Track

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimedPoint:
    """A point tagged with where it came from, for the global ordering."""

    track_index: int
    point_index: int
    point: GeoPoint

    @property
    def seconds(self) -> float:
        return self.point.epoch_seconds


@dataclass(frozen=True)
class Frame:
    index: int
    snapshot: np.ndarray

    @property
    def max_value(self) -> float:
        return float(self.snapshot.max()) if self.snapshot.size else 0.0


def frame_count_for(frame_rate: float, duration: float) -> int:
    if not (frame_rate > 0 and math.isfinite(frame_rate)):
        raise ConfigurationError(f"frame rate must be a positive number, got {frame_rate}")
    if not (duration > 0 and math.isfinite(duration)):
        raise ConfigurationError(f"video duration must be positive, got {duration}")
    return max(1, int(round(frame_rate * duration)))


class AnimationTimeline:
    """
    All points of a run, ordered by timestamp.

    Ties are broken by track order, then by position within the track, so the
    ordering is fully deterministic. Frames split the recorded time span into
    equal slices; a burst of dense samples therefore lands in few frames with
    many points each.
    """

    def __init__(self, points: Sequence[TimedPoint], track_lengths: Sequence[int]):
        if not points:
            raise NoTracksError("no points to animate")
        self.points: List[TimedPoint] = list(points)
        self.track_lengths = list(track_lengths)
        self.start = self.points[0].seconds
        self.end = self.points[-1].seconds

    @classmethod
    def from_tracks(cls, tracks: Iterable[Track]) -> "AnimationTimeline":
        merged: List[TimedPoint] = []
        lengths: List[int] = []
        for track_index, track in enumerate(tracks):
            lengths.append(len(track.points))
            merged.extend(
                TimedPoint(track_index, point_index, point)
                for point_index, point in enumerate(track.points)
            )
        merged.sort(key=lambda tp: (tp.seconds, tp.track_index, tp.point_index))
        logger.info("Timeline built: %d points from %d tracks", len(merged), len(lengths))
        return cls(merged, lengths)

    @property
    def span(self) -> float:
        return self.end - self.start

    def __len__(self) -> int:
        return len(self.points)

    def frame_index(self, seconds: float, frame_count: int) -> int:
        if self.span <= 0:
            return 0
        index = int(math.floor((seconds - self.start) / self.span * frame_count))
        return min(frame_count - 1, max(0, index))

    def partition(self, frame_count: int) -> List[List[TimedPoint]]:
        """Split the ordered points into ``frame_count`` equal-time batches.

        Batch ``i`` covers ``[start + i*span/n, start + (i+1)*span/n)``; the
        last batch also takes the final timestamp. Empty batches are kept so
        the number of frames always equals ``frame_count``.
        """
        if frame_count < 1:
            raise ConfigurationError(f"frame count must be >= 1, got {frame_count}")
        batches: List[List[TimedPoint]] = [[] for _ in range(frame_count)]
        for timed in self.points:
            batches[self.frame_index(timed.seconds, frame_count)].append(timed)
        return batches
