"""Shared CLI utilities to avoid circular imports."""

from __future__ import annotations

from pathlib import Path

import typer

from adopters.utils.config import ConfigError, ScanConfig, load_config
from adopters.utils.output import error
from adopters.utils.paths import find_site_root

FORMAT_OPTION = typer.Option(None, "--format", "-F", help="Output format: json or text")
ROOT_OPTION = typer.Option(None, "--root", help="Site root (default: nearest dir with _data/ or .git/)")


def get_root(root: Path | None = None) -> Path:
    """Resolve the site root the registry lives under."""
    if root is not None:
        return root.resolve()
    found = find_site_root()
    if found is None:
        error("Not inside a site directory (no _data or .git found)")
        raise typer.Exit(1)
    return found


def get_config(root: Path) -> ScanConfig:
    try:
        return load_config(root)
    except ConfigError as e:
        error(str(e))
        raise typer.Exit(1)
