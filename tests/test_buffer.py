from __future__ import annotations

import threading

import numpy as np
import pytest

from core.buffer import AccumulationBuffer
from core.models import PixelCoord


def test_new_buffer_is_zero() -> None:
    buffer = AccumulationBuffer(width=8, height=4)
    assert buffer.shape == (4, 8)
    assert buffer.max_value() == 0.0
    assert buffer.lit_count() == 0


def test_increment_adds_and_rejects_negative() -> None:
    buffer = AccumulationBuffer(4, 4)
    assert buffer.increment(PixelCoord(1, 2), 1.5) == 1.5
    assert buffer.increment(PixelCoord(1, 2), 0.5) == 2.0
    assert buffer.value(PixelCoord(1, 2)) == 2.0
    with pytest.raises(ValueError):
        buffer.increment(PixelCoord(1, 2), -0.1)
    assert buffer.value(PixelCoord(1, 2)) == 2.0


def test_out_of_range_pixel_raises() -> None:
    buffer = AccumulationBuffer(4, 4)
    with pytest.raises(IndexError):
        buffer.increment(PixelCoord(4, 0), 1.0)


def test_accumulate_refuses_to_decrease() -> None:
    buffer = AccumulationBuffer(2, 2)
    buffer.increment(PixelCoord(0, 0), 3.0)
    with pytest.raises(ValueError):
        buffer.accumulate(PixelCoord(0, 0), lambda v: v - 1.0)
    assert buffer.accumulate(PixelCoord(0, 0), lambda v: v + 2.0) == 2.0


def test_snapshot_is_read_only_copy() -> None:
    buffer = AccumulationBuffer(3, 3)
    snap = buffer.snapshot()
    with pytest.raises(ValueError):
        snap[0, 0] = 1.0
    buffer.increment(PixelCoord(0, 0), 1.0)
    assert snap[0, 0] == 0.0
    assert buffer.snapshot()[0, 0] == 1.0


def test_concurrent_increments_are_not_lost() -> None:
    buffer = AccumulationBuffer(16, 64, stripe_rows=4)
    cells = [PixelCoord(3, 1), PixelCoord(3, 40)]

    def worker() -> None:
        for _ in range(2000):
            for cell in cells:
                buffer.accumulate(cell, lambda v: v + 1.0)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert buffer.value(cells[0]) == 16000.0
    assert buffer.value(cells[1]) == 16000.0
    assert np.count_nonzero(buffer.snapshot()) == 2
