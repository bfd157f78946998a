# models.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, NamedTuple, Optional

from app.errors import ConfigurationError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float
    timestamp: datetime = EPOCH

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))

    @property
    def epoch_seconds(self) -> float:
        return self.timestamp.timestamp()


@dataclass(frozen=True)
class Bounds:
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    def __post_init__(self) -> None:
        values = (self.min_lat, self.min_lon, self.max_lat, self.max_lon)
        if not all(math.isfinite(v) for v in values):
            raise ConfigurationError(f"bounds must be finite numbers: {values}")
        if self.lat_span <= 0 or self.lon_span <= 0:
            raise ConfigurationError(
                f"degenerate bounds: lat span {self.lat_span}, lon span {self.lon_span}"
            )

    @property
    def lat_span(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def lon_span(self) -> float:
        return self.max_lon - self.min_lon

    @property
    def mean_latitude(self) -> float:
        return (self.min_lat + self.max_lat) * 0.5

    def contains(self, latitude: float, longitude: float) -> bool:
        return (
            self.min_lat <= latitude <= self.max_lat
            and self.min_lon <= longitude <= self.max_lon
        )


class PixelCoord(NamedTuple):
    x: int
    y: int


@dataclass
class Track:
    """One recorded activity, in recording order."""

    points: List[GeoPoint]
    name: str = "Untitled"
    source: Optional[Path] = None
    started_at: Optional[datetime] = field(default=None)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def start(self) -> datetime:
        if self.started_at is not None:
            return as_utc(self.started_at)
        if self.points:
            return self.points[0].timestamp
        return EPOCH
