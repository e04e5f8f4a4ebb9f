"""Path utilities for the site tree the registry lives in."""

from __future__ import annotations

from pathlib import Path

DATA_DIR = "_data"
REGISTRY_FILENAME = "adopters.json"
REPORT_FILENAME = "adoption.txt"


def find_site_root(start: Path | None = None) -> Path | None:
    """Walk up from start to find a directory containing _data/ or .git/."""
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        if (parent / DATA_DIR).is_dir():
            return parent
        if (parent / ".git").exists():
            return parent
    return None


def registry_path(root: Path) -> Path:
    return root / DATA_DIR / REGISTRY_FILENAME


def report_path(root: Path) -> Path:
    return root / REPORT_FILENAME
