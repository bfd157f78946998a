from __future__ import annotations

from pathlib import Path

import pytest

from app.errors import ConfigurationError
from app.settings import Settings, load_settings


def _base(tmp_path: Path, **overrides):
    values = dict(
        min_lat=0.0,
        min_lon=0.0,
        max_lat=10.0,
        max_lon=10.0,
        width=100,
        input_dir=tmp_path,
        output=tmp_path / "heat.png",
    )
    values.update(overrides)
    return values


def test_valid_settings(tmp_path: Path) -> None:
    settings = load_settings(**_base(tmp_path, palette="Gray"))
    assert isinstance(settings, Settings)
    assert settings.palette == "gray"
    assert settings.normalization == "running"
    assert settings.workers >= 1
    assert settings.bounds().lat_span == 10.0
    assert settings.frame_count() == 0


def test_frame_count_from_rate_and_duration(tmp_path: Path) -> None:
    settings = load_settings(
        **_base(tmp_path, ppm_stream="frames.ppm", frame_rate=24, video_seconds=2.5)
    )
    assert settings.frame_count() == 60


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_lat": 0.0},
        {"min_lon": 11.0},
        {"width": 0},
        {"width": -3},
        {"output": None, "ppm_stream": None},
        {"ppm_stream": "frames.ppm"},
        {"ppm_stream": "frames.ppm", "frame_rate": 0},
        {"palette": "sepia"},
        {"intensity": 0},
        {"normalization": "global"},
        {"min_lat": -91.0},
    ],
)
def test_invalid_settings_are_configuration_errors(tmp_path: Path, overrides) -> None:
    values = _base(tmp_path)
    for key, value in overrides.items():
        if value is None:
            values.pop(key, None)
        else:
            values[key] = value
    with pytest.raises(ConfigurationError):
        load_settings(**values)


def test_environment_overrides(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("TRACKHEAT_INTENSITY", "2.5")
    monkeypatch.setenv("TRACKHEAT_CLIP_SEGMENTS", "true")
    settings = load_settings(**_base(tmp_path))
    assert settings.intensity == 2.5
    assert settings.clip_segments is True
