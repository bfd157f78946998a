from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Literal, Sequence, Tuple

import numpy as np

from app.errors import ConfigurationError

RGB = Tuple[int, int, int]
Normalization = Literal["running", "fixed"]


@dataclass(frozen=True)
class Palette:
    """Gradient defined by ``(threshold, color)`` stops from 0.0 to 1.0."""

    stops: Tuple[Tuple[float, RGB], ...]

    def __post_init__(self) -> None:
        if len(self.stops) < 2:
            raise ConfigurationError("a palette needs at least two stops")
        thresholds = [t for t, _ in self.stops]
        if thresholds[0] != 0.0 or thresholds[-1] != 1.0:
            raise ConfigurationError("palette stops must start at 0.0 and end at 1.0")
        if any(b <= a for a, b in zip(thresholds, thresholds[1:])):
            raise ConfigurationError("palette thresholds must be strictly increasing")
        for _, color in self.stops:
            if len(color) != 3 or any(not 0 <= c <= 255 for c in color):
                raise ConfigurationError(f"invalid palette color {color!r}")

    @classmethod
    def from_pairs(cls, pairs: Sequence[Tuple[float, Sequence[int]]]) -> "Palette":
        return cls(tuple((float(t), tuple(int(c) for c in color)) for t, color in pairs))

    @property
    def thresholds(self) -> np.ndarray:
        return np.array([t for t, _ in self.stops], dtype=np.float64)

    @property
    def colors(self) -> np.ndarray:
        return np.array([c for _, c in self.stops], dtype=np.float64)

    @property
    def background(self) -> RGB:
        return self.stops[0][1]

    def sample(self, positions: np.ndarray) -> np.ndarray:
        """Interpolate colors for positions in ``[0, 1]``; returns uint8 ``(..., 3)``."""
        positions = np.clip(np.asarray(positions, dtype=np.float64), 0.0, 1.0)
        xp = self.thresholds
        colors = self.colors
        channels = [np.interp(positions, xp, colors[:, i]) for i in range(3)]
        return np.clip(np.rint(np.stack(channels, axis=-1)), 0, 255).astype(np.uint8)


PALETTES: Dict[str, Palette] = {
    "hot": Palette.from_pairs(
        [
            (0.0, (0, 0, 0)),
            (0.35, (160, 20, 20)),
            (0.7, (255, 140, 0)),
            (0.9, (255, 230, 90)),
            (1.0, (255, 255, 255)),
        ]
    ),
    "gray": Palette.from_pairs([(0.0, (0, 0, 0)), (1.0, (255, 255, 255))]),
    "ice": Palette.from_pairs(
        [
            (0.0, (0, 0, 0)),
            (0.4, (0, 60, 140)),
            (0.8, (60, 180, 255)),
            (1.0, (230, 250, 255)),
        ]
    ),
}


def get_palette(name: str) -> Palette:
    try:
        return PALETTES[name.strip().lower()]
    except KeyError:
        raise ConfigurationError(f"unknown palette '{name}'") from None


def normalize(values: np.ndarray, max_value: float) -> np.ndarray:
    values = np.asarray(values, dtype=np.float64)
    if max_value <= 0:
        return np.zeros_like(values)
    return np.clip(values / max_value, 0.0, 1.0)


class ColorMapper:
    """
    Converts accumulated intensities into RGB.

    ``running`` divides by the maximum of whatever grid is being colorized, so
    animation frames use the max-so-far and the final image the global max.
    ``fixed`` divides every grid by one reference max set once per run.
    """

    def __init__(self, palette: Palette, normalization: Normalization = "running"):
        if normalization not in ("running", "fixed"):
            raise ConfigurationError(f"unknown normalization '{normalization}'")
        self.palette = palette
        self.normalization = normalization
        self._reference: float | None = None

    @property
    def reference(self) -> float | None:
        return self._reference

    def set_reference(self, max_value: float) -> None:
        if self.normalization != "fixed":
            raise ConfigurationError("a running color mapper takes no reference max")
        if self._reference is not None:
            raise ConfigurationError("reference max already set for this run")
        self._reference = float(max_value)

    def colorize(self, value: float, max_value: float) -> RGB:
        position = normalize(np.array([value]), max_value)
        r, g, b = self.palette.sample(position)[0]
        return int(r), int(g), int(b)

    def _max_for(self, grid: np.ndarray) -> float:
        if self.normalization == "running":
            return float(grid.max()) if grid.size else 0.0
        if self._reference is None:
            raise ConfigurationError("fixed normalization needs a reference max first")
        return self._reference

    def colorize_grid(self, grid: np.ndarray) -> np.ndarray:
        """Colorize a whole buffer snapshot; returns uint8 ``(h, w, 3)`` RGB."""
        return self.palette.sample(normalize(grid, self._max_for(grid)))
