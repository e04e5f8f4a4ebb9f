"""Filter, deduplicate and merge discovered repositories."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable

from adopters.core.schema import RepoRef, SearchHit

logger = logging.getLogger(__name__)

DEFAULT_MARKER = "HALLUCINATE.md"
SPAM_THRESHOLD = 10


def _today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass
class ScanContext:
    """State that lives for exactly one scan run."""

    marker_filename: str = DEFAULT_MARKER
    spam_threshold: int = SPAM_THRESHOLD
    today: date = field(default_factory=_today)
    occurrences: Counter = field(default_factory=Counter)

    def suspicious(self) -> list[tuple[str, int]]:
        return [
            (repo, count)
            for repo, count in self.occurrences.items()
            if count > self.spam_threshold
        ]


def is_marker_path(path: str, marker_filename: str) -> bool:
    """True if the last path segment is exactly the marker (any case)."""
    return path.split("/")[-1].lower() == marker_filename.lower()


def filter_and_deduplicate(
    hits: Iterable[Any] | None, context: ScanContext | None = None
) -> list[RepoRef]:
    """Keep exact marker filenames and the first hit per repository.

    Repositories with more marker files than the spam threshold still get one
    entry; they are only reported in the log.
    """
    if context is None:
        context = ScanContext()
    if not isinstance(hits, (list, tuple)):
        return []

    seen: set[str] = set()
    unique: list[RepoRef] = []
    for raw in hits:
        hit = raw if isinstance(raw, SearchHit) else SearchHit.from_raw(raw)
        if hit is None:
            continue
        if not is_marker_path(hit.path, context.marker_filename):
            continue

        context.occurrences[hit.repository] += 1
        if hit.repository in seen:
            continue
        seen.add(hit.repository)
        unique.append(RepoRef(name_with_owner=hit.repository, file_path=hit.path))

    for repo, count in context.suspicious():
        logger.warning(
            "spam? %s has %d %s files (>%d threshold)",
            repo, count, context.marker_filename, context.spam_threshold,
        )

    return unique


def merge_results(primary: list[RepoRef], secondary: list[RepoRef]) -> list[RepoRef]:
    """Append secondary refs whose repository is not already known. Primary wins."""
    seen = {ref.name_with_owner for ref in primary}
    merged = list(primary)
    for ref in secondary:
        if ref.name_with_owner in seen:
            continue
        seen.add(ref.name_with_owner)
        merged.append(ref)
    return merged
