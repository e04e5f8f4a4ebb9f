"""Daily adoption summary derived from the registry (adoption.txt).

Output looks like:

    count: 10
    yesterday: 2026-02-27
    new_yesterday: 2
    celebrate:
    - 11 owner/repoA (5★)
    - 17 owner/repoB (3★)

Each new adopter gets an hour in the celebration window so announcements are
spread across the day instead of landing all at once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from adopters.core.registry import AdopterRegistry

CELEBRATE_WINDOW_START = 8
CELEBRATE_WINDOW_END = 20


@dataclass
class Celebration:
    hour: int
    full_name: str
    stars: int


@dataclass
class ReportSummary:
    total: int
    yesterday: str
    new_count: int


def get_yesterday_utc(now: datetime | None = None) -> str:
    """Yesterday as YYYY-MM-DD in UTC."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return (now - timedelta(days=1)).date().isoformat()


def _stars(entry: dict) -> int:
    stars = entry.get("stars")
    return stars if isinstance(stars, int) and not isinstance(stars, bool) else 0


def filter_new_adopters(adopters: Any, date_str: str) -> list[dict]:
    """Entries added on date_str, most stars first."""
    if not isinstance(adopters, list):
        return []
    matches = [a for a in adopters if isinstance(a, dict) and a.get("date_added") == date_str]
    return sorted(matches, key=_stars, reverse=True)


def assign_celebration_hours(
    adopters: Any,
    window_start: int = CELEBRATE_WINDOW_START,
    window_end: int = CELEBRATE_WINDOW_END,
) -> list[Celebration]:
    """Spread N adopters evenly over [window_start, window_end).

    Item i lands at window_start + floor(span / N * (i + 0.5)), computed in
    integers so the result never depends on float rounding.
    """
    if not adopters:
        return []
    n = len(adopters)
    span = window_end - window_start
    return [
        Celebration(
            hour=window_start + (span * (2 * i + 1)) // (2 * n),
            full_name=a.get("full_name", ""),
            stars=_stars(a),
        )
        for i, a in enumerate(adopters)
    ]


def format_adoption_txt(
    adopters: Any,
    yesterday: str,
    window_start: int = CELEBRATE_WINDOW_START,
    window_end: int = CELEBRATE_WINDOW_END,
) -> str:
    total = len(adopters) if isinstance(adopters, list) else 0
    new_yesterday = filter_new_adopters(adopters, yesterday)

    lines = [
        f"count: {total}",
        f"yesterday: {yesterday}",
        f"new_yesterday: {len(new_yesterday)}",
        "celebrate:",
    ]
    for c in assign_celebration_hours(new_yesterday, window_start, window_end):
        lines.append(f"- {c.hour:02d} {c.full_name} ({c.stars}★)")
    return "\n".join(lines) + "\n"


def write_report(
    registry: AdopterRegistry,
    output_path: Path,
    now: datetime | None = None,
    window_start: int = CELEBRATE_WINDOW_START,
    window_end: int = CELEBRATE_WINDOW_END,
) -> ReportSummary:
    """Render adoption.txt from the registry. Raises RegistryError if unreadable."""
    adopters = registry.load_raw()
    yesterday = get_yesterday_utc(now)
    output_path.write_text(
        format_adoption_txt(adopters, yesterday, window_start, window_end),
        encoding="utf-8",
    )
    return ReportSummary(
        total=len(adopters),
        yesterday=yesterday,
        new_count=len(filter_new_adopters(adopters, yesterday)),
    )
