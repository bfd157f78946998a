from __future__ import annotations

import numpy as np
import pytest

from app.errors import ConfigurationError
from core.buffer import AccumulationBuffer
from viz.palette import PALETTES, ColorMapper, Palette, get_palette

SPLIT = Palette.from_pairs([(0.0, (0, 0, 0)), (0.5, (100, 200, 0)), (1.0, (200, 200, 200))])


@pytest.mark.parametrize(
    "pairs",
    [
        [(0.1, (0, 0, 0)), (1.0, (1, 1, 1))],
        [(0.0, (0, 0, 0)), (0.9, (1, 1, 1))],
        [(0.0, (0, 0, 0)), (0.5, (1, 1, 1)), (0.5, (2, 2, 2)), (1.0, (3, 3, 3))],
        [(0.0, (0, 0, 0)), (1.0, (256, 0, 0))],
        [(0.0, (0, 0, 0))],
    ],
)
def test_invalid_palettes_rejected(pairs) -> None:
    with pytest.raises(ConfigurationError):
        Palette.from_pairs(pairs)


def test_presets_are_valid_and_start_black() -> None:
    for name, palette in PALETTES.items():
        assert palette.stops[0][0] == 0.0, name
        assert palette.background == (0, 0, 0)
    assert get_palette(" HOT ") is PALETTES["hot"]
    with pytest.raises(ConfigurationError):
        get_palette("sepia")


def test_colorize_interpolates_between_bracketing_stops() -> None:
    mapper = ColorMapper(SPLIT)
    assert mapper.colorize(0.0, 4.0) == (0, 0, 0)
    assert mapper.colorize(1.0, 4.0) == (50, 100, 0)
    assert mapper.colorize(2.0, 4.0) == (100, 200, 0)
    assert mapper.colorize(3.0, 4.0) == (150, 200, 100)
    assert mapper.colorize(4.0, 4.0) == (200, 200, 200)


def test_colorize_clamps_and_handles_zero_max() -> None:
    mapper = ColorMapper(SPLIT)
    assert mapper.colorize(9.0, 4.0) == (200, 200, 200)
    assert mapper.colorize(-1.0, 4.0) == (0, 0, 0)
    assert mapper.colorize(3.0, 0.0) == (0, 0, 0)


def test_zero_buffer_colorizes_to_first_stop() -> None:
    buffer = AccumulationBuffer(7, 5)
    for name, palette in PALETTES.items():
        pixels = ColorMapper(palette).colorize_grid(buffer.snapshot())
        assert pixels.shape == (5, 7, 3)
        assert pixels.dtype == np.uint8
        assert np.all(pixels == np.array(palette.background, dtype=np.uint8)), name


def test_running_normalization_uses_grid_max() -> None:
    grid = np.array([[0.0, 1.0], [2.0, 4.0]])
    pixels = ColorMapper(SPLIT).colorize_grid(grid)
    assert tuple(pixels[0, 1]) == (50, 100, 0)
    assert tuple(pixels[1, 1]) == (200, 200, 200)


def test_fixed_normalization_uses_reference() -> None:
    mapper = ColorMapper(SPLIT, normalization="fixed")
    with pytest.raises(ConfigurationError):
        mapper.colorize_grid(np.zeros((2, 2)))
    mapper.set_reference(8.0)
    pixels = mapper.colorize_grid(np.array([[4.0, 8.0]]))
    assert tuple(pixels[0, 0]) == (100, 200, 0)
    assert tuple(pixels[0, 1]) == (200, 200, 200)
    with pytest.raises(ConfigurationError):
        mapper.set_reference(2.0)


def test_running_mapper_refuses_reference() -> None:
    with pytest.raises(ConfigurationError):
        ColorMapper(SPLIT).set_reference(1.0)
    with pytest.raises(ConfigurationError):
        ColorMapper(SPLIT, normalization="global")  # type: ignore[arg-type]
