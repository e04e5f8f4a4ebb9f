"""AdopterRegistry: the persisted _data/adopters.json list."""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any

from adopters.core.schema import AdopterEntry

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    pass


class AdopterRegistry:
    """Read-modify-write access to the registry file.

    The file is always rewritten in full; callers are responsible for never
    handing `write` an empty list.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    @property
    def exists(self) -> bool:
        return self.path.is_file()

    def load_raw(self) -> list[Any]:
        """Return the stored list as plain JSON values."""
        if not self.exists:
            raise RegistryError(f"Registry not found: {self.path}")
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (ValueError, OSError) as e:  # bad JSON or bad encoding
            raise RegistryError(f"Registry unreadable: {e}") from e
        if not isinstance(data, list):
            raise RegistryError("Registry must contain a JSON list")
        return data

    def existing_dates(self) -> dict[str, str]:
        """Map full_name -> date_added from the previous run.

        A missing or corrupt file yields an empty map: every entry is new.
        """
        try:
            data = self.load_raw()
        except RegistryError as e:
            logger.debug("No previous dates: %s", e)
            return {}

        dates: dict[str, str] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            full_name = item.get("full_name")
            date_added = item.get("date_added")
            if not isinstance(full_name, str) or not isinstance(date_added, str):
                continue
            if full_name and date_added:
                dates[full_name] = date_added
        return dates

    def write(self, entries: list[AdopterEntry]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [entry.model_dump() for entry in entries]
        self.path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )


def stamp_dates(
    entries: list[AdopterEntry], existing: dict[str, str], today: date
) -> int:
    """Carry date_added over by full_name; stamp the rest with today.

    Returns how many entries were new.
    """
    stamp = today.isoformat()
    new_count = 0
    for entry in entries:
        previous = existing.get(entry.full_name)
        if previous:
            entry.date_added = previous
        else:
            entry.date_added = stamp
            new_count += 1
    return new_count


def sort_by_stars(entries: list[AdopterEntry]) -> list[AdopterEntry]:
    return sorted(entries, key=lambda e: e.stars, reverse=True)
