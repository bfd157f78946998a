from __future__ import annotations

import threading
from contextlib import ExitStack
from typing import Callable, List, Tuple

import numpy as np

from core.models import PixelCoord

DEFAULT_STRIPE_ROWS = 16


class AccumulationBuffer:
    """
    Fixed-size per-pixel intensity grid shared by the rasterizer workers.

    Cells are only ever increased. Writers lock the band of rows ("stripe")
    that holds the cell they touch, so workers drawing in different parts of
    the map do not contend; ``snapshot`` takes every stripe lock and therefore
    never observes a half-applied update.
    """

    def __init__(self, width: int, height: int, stripe_rows: int = DEFAULT_STRIPE_ROWS):
        if width <= 0 or height <= 0:
            raise ValueError(f"buffer dimensions must be positive, got {width}x{height}")
        if stripe_rows <= 0:
            raise ValueError("stripe_rows must be >= 1")
        self.width = int(width)
        self.height = int(height)
        self._grid = np.zeros((self.height, self.width), dtype=np.float64)
        self._stripe_rows = int(stripe_rows)
        stripes = (self.height + self._stripe_rows - 1) // self._stripe_rows
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    def _lock_for(self, coord: PixelCoord) -> threading.Lock:
        x, y = coord
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"pixel {coord} outside {self.width}x{self.height} buffer")
        return self._locks[y // self._stripe_rows]

    def increment(self, coord: PixelCoord, amount: float) -> float:
        """Add ``amount`` to a cell and return the new value."""
        if amount < 0:
            raise ValueError(f"increment amount must be non-negative, got {amount}")
        x, y = coord
        with self._lock_for(coord):
            self._grid[y, x] += amount
            return float(self._grid[y, x])

    def accumulate(self, coord: PixelCoord, update: Callable[[float], float]) -> float:
        """Atomically replace a cell's value ``v`` with ``update(v)``.

        Returns the amount the cell grew by.
        """
        x, y = coord
        with self._lock_for(coord):
            current = float(self._grid[y, x])
            new_value = float(update(current))
            if new_value < current:
                raise ValueError(
                    f"accumulation would decrease pixel {coord}: {current} -> {new_value}"
                )
            self._grid[y, x] = new_value
            return new_value - current

    def value(self, coord: PixelCoord) -> float:
        x, y = coord
        with self._lock_for(coord):
            return float(self._grid[y, x])

    def snapshot(self) -> np.ndarray:
        """Read-only copy of the whole grid."""
        with ExitStack() as stack:
            for lock in self._locks:
                stack.enter_context(lock)
            copy = self._grid.copy()
        copy.setflags(write=False)
        return copy

    def max_value(self) -> float:
        return float(self.snapshot().max())

    def lit_count(self) -> int:
        return int(np.count_nonzero(self.snapshot()))
