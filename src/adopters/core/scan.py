"""AdopterScanner: one batch run from search to a rewritten registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

from adopters.core.reconcile import ScanContext, filter_and_deduplicate, merge_results
from adopters.core.registry import AdopterRegistry, sort_by_stars, stamp_dates
from adopters.core.sanitize import sanitize_collection
from adopters.core.schema import AdopterEntry, IssueAction, RepoRef
from adopters.sources.gh import GhClient, GhError, sleep_ms
from adopters.sources.issues import IssueVerifier
from adopters.utils.config import ScanConfig

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    status: str  # "written" or "aborted"
    from_search: int = 0
    from_issues: int = 0
    unique: int = 0
    fetched: int = 0
    failed: int = 0
    written: int = 0
    new: int = 0
    actions: int = 0
    hit_result_cap: bool = False

    def to_dict(self) -> dict:
        return dict(self.__dict__)


def build_adopter_entry(repo: Any, file_path: str) -> dict | None:
    """Shape a `gh api repos/<id>` payload into a raw registry entry.

    Returns None when the owner login or html_url is missing.
    """
    if not isinstance(repo, dict):
        return None
    owner = repo.get("owner")
    if not isinstance(owner, dict) or not owner.get("login") or not repo.get("html_url"):
        return None

    return {
        "owner": owner["login"],
        "repo": repo.get("name"),
        "full_name": repo.get("full_name"),
        "description": repo.get("description"),
        "stars": repo.get("stargazers_count"),
        "language": repo.get("language"),
        "avatar": owner.get("avatar_url"),
        "url": repo["html_url"],
        "default_branch": repo.get("default_branch"),
        "file_url": f"{repo['html_url']}/blob/{repo.get('default_branch')}/{file_path}",
        "file_path": file_path,
    }


class AdopterScanner:
    """Sequences search, issue verification, metadata fetch and persistence."""

    def __init__(
        self,
        gh: GhClient,
        registry: AdopterRegistry,
        config: ScanConfig | None = None,
        verifier: IssueVerifier | None = None,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.gh = gh
        self.registry = registry
        self.config = config or ScanConfig()
        self._sleep = sleep_fn or sleep_ms
        self.verifier = verifier or IssueVerifier(gh, self.config, self._sleep)

    def new_context(self, today: date | None = None) -> ScanContext:
        ctx = ScanContext(
            marker_filename=self.config.marker_filename,
            spam_threshold=self.config.spam_threshold,
        )
        if today is not None:
            ctx.today = today
        return ctx

    # -- Stages --

    def search(self, summary: ScanSummary) -> list[dict]:
        query = self.config.search_query
        try:
            logger.info("Searching: %s", query)
            results = self.gh.search_code(query, limit=self.config.result_cap)
        except GhError as e:
            logger.warning("search failed after retries: %s", e)
            return []

        logger.info("%d results", len(results))
        if len(results) >= self.config.result_cap:
            summary.hit_result_cap = True
            logger.warning(
                "hit %d result cap, some repos may be missing", self.config.result_cap
            )
        return results

    def fetch_entries(self, refs: list[RepoRef], summary: ScanSummary) -> list[dict]:
        entries: list[dict] = []
        for ref in refs:
            try:
                repo = self.gh.api_get(f"repos/{ref.name_with_owner}")
                entry = build_adopter_entry(repo, ref.file_path)
                if entry is not None:
                    entries.append(entry)
                else:
                    logger.warning("%s: incomplete repository metadata", ref.name_with_owner)
                summary.fetched += 1
            except GhError as e:
                summary.failed += 1
                logger.warning("%s: %s", ref.name_with_owner, e)

            self._sleep(self.config.pacing_ms)

        logger.info("Fetched: %d, Failed: %d", summary.fetched, summary.failed)
        return entries

    # -- Run --

    def run(self, today: date | None = None) -> ScanSummary:
        ctx = self.new_context(today)
        summary = ScanSummary(status="aborted")

        hits = self.search(summary)
        from_search = filter_and_deduplicate(hits, ctx)
        summary.from_search = len(from_search)
        logger.info("Unique repos from search: %d", len(from_search))

        submissions = self.verifier.load_submissions()
        summary.from_issues = len(submissions.verified)
        logger.info("Unique repos from issues: %d", len(submissions.verified))

        unique = merge_results(from_search, submissions.verified)
        summary.unique = len(unique)
        logger.info("Total unique repos: %d", len(unique))

        if not unique:
            logger.error(
                "No results from any source. Keeping %s unchanged.", self.registry.path
            )
            return summary

        raw_entries = self.fetch_entries(unique, summary)
        entries = sanitize_collection(raw_entries)
        if not entries:
            logger.error(
                "No valid adopters after fetching. Keeping %s unchanged.", self.registry.path
            )
            return summary

        summary.new = stamp_dates(entries, self.registry.existing_dates(), ctx.today)
        if summary.new:
            logger.info("New adopters: %d (date_added = %s)", summary.new, ctx.today.isoformat())

        entries = sort_by_stars(entries)
        self.write(entries, summary)

        self.housekeep(submissions.actions, summary)
        return summary

    def write(self, entries: list[AdopterEntry], summary: ScanSummary) -> None:
        self.registry.write(entries)
        summary.status = "written"
        summary.written = len(entries)
        logger.info("Wrote %d adopters to %s", len(entries), self.registry.path)

    def housekeep(self, actions: list[IssueAction], summary: ScanSummary) -> None:
        summary.actions = len(actions)
        self.verifier.process_actions(actions)
