"""Centralized run settings using pydantic-settings."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.errors import ConfigurationError
from core.models import Bounds
from core.timeline import frame_count_for
from viz.palette import PALETTES


def _default_workers() -> int:
    return max(1, min(8, os.cpu_count() or 1))


class Settings(BaseSettings):
    """Configuration for one heatmap render."""

    model_config = SettingsConfigDict(
        env_prefix="TRACKHEAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Region
    min_lat: float = Field(..., ge=-90.0, le=90.0, description="Southern edge of the bounds")
    min_lon: float = Field(..., ge=-180.0, le=180.0, description="Western edge of the bounds")
    max_lat: float = Field(..., ge=-90.0, le=90.0, description="Northern edge of the bounds")
    max_lon: float = Field(..., ge=-180.0, le=180.0, description="Eastern edge of the bounds")
    width: int = Field(..., gt=0, description="Output width in pixels")

    # Input
    input_dir: Path = Field(..., description="Directory holding the track files")
    recursive: bool = Field(default=False, description="Descend into subdirectories")
    workers: int = Field(default_factory=_default_workers, ge=1, description="Decode/rasterize threads")

    # Outputs
    output: Path | None = Field(default=None, description="PNG destination for the static heatmap")
    ppm_stream: str | None = Field(default=None, description="Raw PPM frame stream destination, '-' for stdout")
    frame_rate: float | None = Field(default=None, gt=0, description="Frames per second of output video")
    video_seconds: float = Field(default=30.0, gt=0, description="Length of the output video in seconds")

    # Rendering
    intensity: float = Field(default=1.0, gt=0, description="Per-hit intensity constant")
    palette: str = Field(default="hot", description="Palette preset name")
    normalization: Literal["running", "fixed"] = Field(
        default="running", description="Max used to normalize intensities"
    )
    clip_segments: bool = Field(
        default=False, description="Clip out-of-bounds segments to the edge instead of dropping them"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_dir: Path | None = Field(default=None, description="Directory for the rotating log file")

    @field_validator("palette")
    @classmethod
    def known_palette(cls, value: str) -> str:
        name = value.strip().lower()
        if name not in PALETTES:
            raise ValueError(
                f"unknown palette '{value}', choose one of: {', '.join(sorted(PALETTES))}"
            )
        return name

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("ppm_stream")
    @classmethod
    def empty_stream_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @model_validator(mode="after")
    def check_consistency(self) -> "Settings":
        if self.min_lat >= self.max_lat:
            raise ValueError("min_lat must be less than max_lat")
        if self.min_lon >= self.max_lon:
            raise ValueError("min_lon must be less than max_lon")
        if self.output is None and self.ppm_stream is None:
            raise ValueError("at least one of output or ppm_stream is required")
        if self.ppm_stream is not None and self.frame_rate is None:
            raise ValueError("frame_rate is required when ppm_stream is set")
        return self

    def bounds(self) -> Bounds:
        return Bounds(
            min_lat=self.min_lat,
            min_lon=self.min_lon,
            max_lat=self.max_lat,
            max_lon=self.max_lon,
        )

    def frame_count(self) -> int:
        """Number of frames the stream will carry."""
        if self.frame_rate is None:
            return 0
        return frame_count_for(self.frame_rate, self.video_seconds)


def load_settings(**overrides: Any) -> Settings:
    """Build settings from the environment plus explicit overrides.

    Raises:
        ConfigurationError: If any value is missing or invalid.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return Settings(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'settings'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(problems) from exc
