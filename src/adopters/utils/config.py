"""Scan configuration: defaults plus optional per-site JSON overrides."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

CONFIG_FILENAME = "adopters.config.json"


class ConfigError(Exception):
    pass


class ScanConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    marker_filename: str = "HALLUCINATE.md"
    issues_repo: str = "hallucinatemd/hallucinate.md"
    submission_label: str = "add-repo"
    rejected_label: str = "rejected"
    wall_url: str = "https://hallucinate.md/#adopters"

    # GitHub code search never returns more than this many results per query
    result_cap: int = 1000
    spam_threshold: int = 10

    retries: int = 5
    base_delay_ms: int = 2000
    timeout_ms: int = 30_000
    # 1s between calls keeps us well under 5000 authenticated requests/hour
    pacing_ms: int = 1000

    celebrate_window_start: int = 8
    celebrate_window_end: int = 20

    @property
    def search_query(self) -> str:
        # Code search only honours code qualifiers; stars:/fork: silently return nothing
        return f"filename:{self.marker_filename}"


def config_path(root: Path) -> Path:
    return root / CONFIG_FILENAME


def load_config(root: Path) -> ScanConfig:
    path = config_path(root)
    if not path.exists():
        return ScanConfig()
    try:
        return ScanConfig.model_validate(json.loads(path.read_text()))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigError(f"Invalid {CONFIG_FILENAME}: {e}") from e
