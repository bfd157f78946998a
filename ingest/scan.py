from __future__ import annotations

from pathlib import Path
from typing import List

from app.errors import ConfigurationError


def iter_track_files(directory: Path, recursive: bool = False) -> List[Path]:
    """Regular, non-hidden files under ``directory`` in a stable order."""
    directory = Path(directory).expanduser()
    if not directory.is_dir():
        raise ConfigurationError(f"input directory not found: {directory}")
    candidates = directory.rglob("*") if recursive else directory.iterdir()
    return sorted(
        path
        for path in candidates
        if path.is_file() and not path.name.startswith(".")
    )
