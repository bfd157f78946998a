"""Track rasterization into an :class:`AccumulationBuffer`.

Each pixel hit grows by ``intensity / (1 + v)`` where ``v`` is the pixel's
current value. Deltas shrink with every repeated hit, so heavily travelled
pixels still rank highest without blowing out the palette's dynamic range.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from app.errors import ConfigurationError
from core.buffer import AccumulationBuffer
from core.models import GeoPoint, PixelCoord, Track
from core.projection import GeoProjector

logger = logging.getLogger(__name__)


def line_pixels(start: PixelCoord, end: PixelCoord) -> List[PixelCoord]:
    """Bresenham walk from ``start`` to ``end``, both endpoints included."""
    x0, y0 = start
    x1, y1 = end
    dx = abs(x1 - x0)
    dy = -abs(y1 - y0)
    sx = 1 if x0 < x1 else -1
    sy = 1 if y0 < y1 else -1
    err = dx + dy
    pixels: List[PixelCoord] = []
    while True:
        pixels.append(PixelCoord(x0, y0))
        if x0 == x1 and y0 == y1:
            return pixels
        e2 = 2 * err
        if e2 >= dy:
            err += dy
            x0 += sx
        if e2 <= dx:
            err += dx
            y0 += sy


def clip_to_rect(
    p0: Tuple[float, float], p1: Tuple[float, float], width: float, height: float
) -> Optional[Tuple[Tuple[float, float], Tuple[float, float]]]:
    """Liang-Barsky clip of a segment against ``[0, width] x [0, height]``."""
    x0, y0 = p0
    dx = p1[0] - x0
    dy = p1[1] - y0
    t0, t1 = 0.0, 1.0
    for p, q in ((-dx, x0), (dx, width - x0), (-dy, y0), (dy, height - y0)):
        if p == 0:
            if q < 0:
                return None
            continue
        r = q / p
        if p < 0:
            if r > t1:
                return None
            t0 = max(t0, r)
        else:
            if r < t0:
                return None
            t1 = min(t1, r)
    return (x0 + t0 * dx, y0 + t0 * dy), (x0 + t1 * dx, y0 + t1 * dy)


class TrackRasterizer:
    """Draws tracks as connected pixel paths into a shared buffer."""

    def __init__(
        self,
        projector: GeoProjector,
        buffer: AccumulationBuffer,
        intensity: float = 1.0,
        clip_segments: bool = False,
    ):
        if intensity <= 0:
            raise ConfigurationError(f"intensity must be positive, got {intensity}")
        if buffer.shape != projector.shape:
            raise ConfigurationError(
                f"buffer shape {buffer.shape} does not match projection {projector.shape}"
            )
        self.projector = projector
        self.buffer = buffer
        self.intensity = float(intensity)
        self.clip_segments = clip_segments

    def hit_delta(self, value: float) -> float:
        return self.intensity / (1.0 + value)

    def hit(self, pixel: PixelCoord) -> float:
        return self.buffer.accumulate(pixel, lambda v: v + self.hit_delta(v))

    def segment_pixels(self, a: GeoPoint, b: GeoPoint) -> Optional[List[PixelCoord]]:
        """Pixels covered by the segment ``a -> b``, or None when it is dropped.

        Segments with an endpoint outside the bounds are dropped unless
        ``clip_segments`` is set, in which case the part inside the bounds is
        kept.
        """
        pa = self.projector.project(a)
        pb = self.projector.project(b)
        if pa is not None and pb is not None:
            return line_pixels(pa, pb)
        if not self.clip_segments:
            return None
        proj = self.projector
        clipped = clip_to_rect(
            proj.to_fractional(a.latitude, a.longitude),
            proj.to_fractional(b.latitude, b.longitude),
            proj.width,
            proj.height,
        )
        if clipped is None:
            return None
        start, end = clipped
        return line_pixels(proj.pixel_from_fractional(*start), proj.pixel_from_fractional(*end))

    def walker(self, total_points: int) -> "PathWalker":
        return PathWalker(self, total_points)

    def rasterize(self, track: Track) -> int:
        """Draw a whole track; returns the number of pixel hits."""
        walker = self.walker(len(track.points))
        for point in track.points:
            walker.advance(point)
        if walker.dropped_segments:
            logger.debug(
                "Track %s: %d segment(s) outside bounds dropped",
                track.name,
                walker.dropped_segments,
            )
        return walker.hits


class PathWalker:
    """Incremental drawing state for one track.

    Points are fed one at a time, so the same walker serves the static path
    (whole track at once) and the animation (points spread over frames). The
    pixel shared by two consecutive drawn segments is hit once.
    """

    def __init__(self, rasterizer: TrackRasterizer, total_points: int):
        self._rasterizer = rasterizer
        self._total = total_points
        self._previous: Optional[GeoPoint] = None
        self._last_pixel: Optional[PixelCoord] = None
        self.seen = 0
        self.hits = 0
        self.dropped_segments = 0

    def advance(self, point: GeoPoint) -> int:
        """Feed the next point; returns the hits this point caused."""
        self.seen += 1
        before = self.hits
        previous, self._previous = self._previous, point

        if previous is None:
            if self._total == 1:
                pixel = self._rasterizer.projector.project(point)
                if pixel is not None:
                    self._rasterizer.hit(pixel)
                    self.hits += 1
            return self.hits - before

        pixels = self._rasterizer.segment_pixels(previous, point)
        if pixels is None:
            self.dropped_segments += 1
            self._last_pixel = None
            return 0

        start = 1 if pixels[0] == self._last_pixel else 0
        for pixel in pixels[start:]:
            self._rasterizer.hit(pixel)
            self.hits += 1
        self._last_pixel = pixels[-1]
        return self.hits - before
