"""General IO helpers for configuration files and result directories."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import yaml


def load_yaml(path: str | Path) -> dict:
    """Load a YAML file into a dictionary."""
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def save_yaml(obj: Any, path: str | Path) -> None:
    """Dump a plain-data object to YAML."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(obj, handle, sort_keys=False)


def prepare_output_dirs(root: str | Path, subdirs: Iterable[str], patterns: Iterable[str] = ("*.txt",)) -> Path:
    """Create `root/<subdir>` for every subdir and delete stale files matching `patterns`."""
    root = Path(root)
    for sub in subdirs:
        target = root / sub
        target.mkdir(parents=True, exist_ok=True)
        for pattern in patterns:
            for stale in target.glob(pattern):
                stale.unlink()
    return root
