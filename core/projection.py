"""Equirectangular projection of a geographic bounding box onto a pixel grid."""
from __future__ import annotations

import logging
import math
from typing import Optional, Tuple, Union

from app.errors import ConfigurationError
from core.models import Bounds, GeoPoint, PixelCoord

logger = logging.getLogger(__name__)

PointLike = Union[GeoPoint, Tuple[float, float]]


def derived_height(bounds: Bounds, width: int) -> int:
    """Rows needed to keep the region's visual aspect ratio at ``width`` columns.

    A degree of longitude spans ``cos(mean_lat)`` times the ground distance of a
    degree of latitude, so the latitude extent is stretched by ``1 / cos``.
    """
    correction = math.cos(math.radians(bounds.mean_latitude))
    if correction <= 1e-9:
        raise ConfigurationError("bounds are too close to a pole to project")
    height = width * (bounds.lat_span / bounds.lon_span) / correction
    return max(1, int(round(height)))


class GeoProjector:
    """Maps geographic points inside ``bounds`` to pixel coordinates.

    Column 0 is the western edge and row 0 the northern edge. Points outside
    the bounds project to ``None``; that is a drop, not an error.
    """

    def __init__(self, bounds: Bounds, width: int):
        if int(width) != width or width <= 0:
            raise ConfigurationError(f"width must be a positive integer, got {width!r}")
        self.bounds = bounds
        self.width = int(width)
        self.height = derived_height(bounds, self.width)
        logger.info(
            "Projector ready: %dx%d px for lat [%s, %s] lon [%s, %s]",
            self.width,
            self.height,
            bounds.min_lat,
            bounds.max_lat,
            bounds.min_lon,
            bounds.max_lon,
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    def to_fractional(self, latitude: float, longitude: float) -> Tuple[float, float]:
        """Continuous pixel position, unclamped; used for edge clipping."""
        b = self.bounds
        fx = (longitude - b.min_lon) / b.lon_span * self.width
        fy = (b.max_lat - latitude) / b.lat_span * self.height
        return fx, fy

    def pixel_from_fractional(self, fx: float, fy: float) -> PixelCoord:
        x = min(self.width - 1, max(0, int(math.floor(fx))))
        y = min(self.height - 1, max(0, int(math.floor(fy))))
        return PixelCoord(x, y)

    def project(self, point: PointLike) -> Optional[PixelCoord]:
        if isinstance(point, GeoPoint):
            latitude, longitude = point.latitude, point.longitude
        else:
            latitude, longitude = point
        if not self.bounds.contains(latitude, longitude):
            return None
        # max edges fall exactly on width/height and clamp into the last cell
        return self.pixel_from_fractional(*self.to_fractional(latitude, longitude))
