from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.errors import ConfigurationError
from core.models import EPOCH, Bounds, GeoPoint


def test_point_without_time_sits_at_epoch() -> None:
    point = GeoPoint(1.0, 2.0)
    assert point.timestamp == EPOCH
    assert point.timestamp is not None
    assert point.epoch_seconds == 0.0


def test_point_time_is_normalized_to_utc() -> None:
    naive = GeoPoint(1.0, 2.0, datetime(2024, 5, 1, 8, 0))
    assert naive.timestamp.tzinfo == timezone.utc
    offset = GeoPoint(1.0, 2.0, datetime(2024, 5, 1, 10, 0, tzinfo=timezone(timedelta(hours=2))))
    assert offset.timestamp == naive.timestamp
    assert offset.timestamp.utcoffset() == timedelta(0)


def test_bounds_contains_edges() -> None:
    bounds = Bounds(0.0, 0.0, 10.0, 20.0)
    assert bounds.contains(0.0, 0.0)
    assert bounds.contains(10.0, 20.0)
    assert not bounds.contains(10.5, 5.0)


@pytest.mark.parametrize(
    "values",
    [(0.0, 0.0, 0.0, 10.0), (5.0, 0.0, 1.0, 10.0), (0.0, float("nan"), 1.0, 1.0)],
)
def test_bad_bounds(values) -> None:
    with pytest.raises(ConfigurationError):
        Bounds(*values)
