import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Sequence, Tuple

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.models import Bounds, GeoPoint, Track  # noqa: E402

T0 = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


def make_track(
    coords: Sequence[Tuple[float, float]], start_s: float = 0.0, step_s: float = 1.0, name: str = "t"
) -> Track:
    points = [
        GeoPoint(lat, lon, T0 + timedelta(seconds=start_s + i * step_s))
        for i, (lat, lon) in enumerate(coords)
    ]
    return Track(points=points, name=name)


def write_csv_track(path: Path, rows: Iterable[Tuple[float, float, float]]) -> Path:
    """Rows are ``(lat, lon, seconds after T0)``."""
    lines = ["lat,lon,time"]
    for lat, lon, seconds in rows:
        stamp = (T0 + timedelta(seconds=seconds)).isoformat().replace("+00:00", "Z")
        lines.append(f"{lat},{lon},{stamp}")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def square_bounds() -> Bounds:
    return Bounds(min_lat=0.0, min_lon=0.0, max_lat=10.0, max_lon=10.0)
