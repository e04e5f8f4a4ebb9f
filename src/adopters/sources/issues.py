"""Community submissions filed as labelled GitHub issues.

Each issue names a repository either as a blob URL to the marker file or as a
bare `owner/repo`. Submissions are verified against the contents API, and open
issues get a housekeeping action (close as valid, or reject) that runs after
the registry has been written.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import quote, unquote

from pydantic import ValidationError

from adopters.core.reconcile import DEFAULT_MARKER, is_marker_path
from adopters.core.schema import (
    ActionType,
    IssueAction,
    IssueSubmission,
    RejectReason,
    RepoRef,
    SubmissionState,
)
from adopters.sources.gh import GhClient, GhError, sleep_ms
from adopters.utils.config import ScanConfig

logger = logging.getLogger(__name__)

_BLOB_URL_RE = re.compile(r"https://github\.com/([^/\s]+)/([^/\s]+)/blob/[^/\s]+/(\S+)")
_TRAILING_PUNCT_RE = re.compile(r"[),;.'\"]+$")
_ANY_URL_RE = re.compile(r"https?://\S+")
_SHORTHAND_RE = re.compile(
    r"\b([a-zA-Z0-9][-a-zA-Z0-9.]*)/([a-zA-Z0-9][-a-zA-Z0-9.]*)\b", re.ASCII
)


def comment_valid(name_with_owner: str, config: ScanConfig) -> str:
    return (
        f"✅ Verified! **{name_with_owner}** has been added to the "
        f"[{config.marker_filename} adopter wall]({config.wall_url}). "
        "Please don't delete this issue. It keeps your repo on the wall until "
        "GitHub's search index catches up."
    )


def comment_invalid(name_with_owner: str | None, config: ScanConfig) -> str:
    return (
        f"❌ Could not find a `{config.marker_filename}` file in **{name_with_owner}**. "
        "Please add the file and open a new issue."
    )


COMMENT_UNPARSEABLE = (
    "❌ Could not extract a repository from this issue. Please use the format "
    "`owner/repo` or a full GitHub URL and open a new issue."
)


def parse_submission(text: object, marker_filename: str = DEFAULT_MARKER) -> RepoRef | None:
    """Extract a repository reference from free issue text.

    A blob URL ending in the marker file wins; otherwise the first bare
    `owner/repo` outside any URL is used with the marker at the repo root.
    """
    if not isinstance(text, str) or not text:
        return None

    m = _BLOB_URL_RE.search(text)
    if m:
        raw_path = _TRAILING_PUNCT_RE.sub("", m.group(3))
        decoded = unquote(raw_path)
        if is_marker_path(decoded, marker_filename):
            return RepoRef(name_with_owner=f"{m.group(1)}/{m.group(2)}", file_path=decoded)

    without_urls = _ANY_URL_RE.sub("", text)
    m = _SHORTHAND_RE.search(without_urls)
    if m:
        return RepoRef(name_with_owner=f"{m.group(1)}/{m.group(2)}", file_path=marker_filename)

    return None


@dataclass
class VerificationResult:
    verified: list[RepoRef] = field(default_factory=list)
    actions: list[IssueAction] = field(default_factory=list)


class IssueVerifier:
    """List, verify and housekeep adoption-request issues."""

    def __init__(
        self,
        gh: GhClient,
        config: ScanConfig | None = None,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.gh = gh
        self.config = config or ScanConfig()
        self._sleep = sleep_fn or sleep_ms

    # -- Listing --

    def list_submissions(self) -> list[IssueSubmission]:
        """All labelled issues, open and closed. Raises GhError on failure."""
        endpoint = (
            f"repos/{self.config.issues_repo}/issues"
            f"?labels={self.config.submission_label}&state=all"
        )
        issues: list[IssueSubmission] = []
        for raw in self.gh.api_get_paginated(endpoint):
            try:
                issues.append(IssueSubmission.model_validate(raw))
            except ValidationError as e:
                logger.warning("skipping malformed issue payload: %s", e.error_count())
        return issues

    def load_submissions(self) -> VerificationResult:
        """List and verify submissions; a listing failure yields nothing."""
        try:
            logger.info(
                'Fetching "%s" issues from %s...',
                self.config.submission_label, self.config.issues_repo,
            )
            issues = self.list_submissions()
        except GhError as e:
            logger.warning("failed to fetch issues: %s", e)
            return VerificationResult()

        if not issues:
            logger.info("no %s issues", self.config.submission_label)
            return VerificationResult()

        open_count = sum(1 for i in issues if i.is_open)
        logger.info(
            "%d issue(s) (%d open, %d closed)", len(issues), open_count, len(issues) - open_count
        )
        return self.verify(issues)

    # -- Verification --

    def candidates(self, issue: IssueSubmission) -> list[RepoRef]:
        parsed = [
            parse_submission(issue.title, self.config.marker_filename),
            parse_submission(issue.body, self.config.marker_filename),
        ]
        return [p for p in parsed if p is not None]

    def exists(self, ref: RepoRef) -> bool:
        try:
            self.gh.api_get(f"repos/{ref.name_with_owner}/contents/{quote(ref.file_path)}")
        except GhError:
            return False
        return True

    def verify_issue(
        self, issue: IssueSubmission, already_verified: set[str]
    ) -> tuple[SubmissionState, RepoRef | None]:
        """Walk one issue from new to a terminal state.

        Returns the terminal state and the candidate it settled on: the
        verified one, or the last one tried.
        """
        candidates = self.candidates(issue)
        if not candidates:
            return SubmissionState.unparseable, None

        state = SubmissionState.new
        last: RepoRef | None = None
        for ref in candidates:
            last = ref
            if ref.name_with_owner in already_verified:
                state = SubmissionState.verified
                break
            if self.exists(ref):
                state = SubmissionState.verified
                break
            logger.warning(
                "issue #%d: %s/%s not found, trying next",
                issue.number, ref.name_with_owner, ref.file_path,
            )
            self._sleep(self.config.pacing_ms)

        if state == SubmissionState.new:
            state = SubmissionState.not_found
        return state, last

    def verify(self, issues: list[IssueSubmission]) -> VerificationResult:
        result = VerificationResult()
        seen: set[str] = set()

        for issue in issues:
            state, ref = self.verify_issue(issue, seen)

            if state == SubmissionState.verified and ref is not None:
                if ref.name_with_owner not in seen:
                    seen.add(ref.name_with_owner)
                    result.verified.append(ref)
                    logger.info("issue #%d: %s (verified)", issue.number, ref.name_with_owner)
                if issue.is_open:
                    result.actions.append(IssueAction(
                        number=issue.number,
                        type=ActionType.close_valid,
                        name_with_owner=ref.name_with_owner,
                    ))
            elif state == SubmissionState.unparseable:
                logger.warning("issue #%d: no valid URL or owner/repo found", issue.number)
                if issue.is_open:
                    result.actions.append(IssueAction(
                        number=issue.number,
                        type=ActionType.reject,
                        reason=RejectReason.unparseable,
                    ))
            else:
                logger.warning("issue #%d: no valid submission found", issue.number)
                if issue.is_open:
                    result.actions.append(IssueAction(
                        number=issue.number,
                        type=ActionType.reject,
                        name_with_owner=ref.name_with_owner if ref else None,
                        reason=RejectReason.not_found,
                    ))

        return result

    # -- Housekeeping --

    def process_actions(self, actions: list[IssueAction] | None) -> None:
        """Comment on, relabel and close issues. One failure never stops the rest."""
        if not actions:
            return

        logger.info("Processing %d issue action(s)...", len(actions))
        calls = 0

        def issue_cmd(*args: str) -> None:
            nonlocal calls
            if calls:
                self._sleep(self.config.pacing_ms)
            calls += 1
            self.gh.run(["issue", *args])

        repo = self.config.issues_repo
        for action in actions:
            number = str(action.number)
            try:
                if action.type == ActionType.close_valid:
                    issue_cmd("comment", number, "--repo", repo,
                              "--body", comment_valid(action.name_with_owner or "", self.config))
                    issue_cmd("close", number, "--repo", repo)
                    logger.info("issue #%s: commented + closed", number)
                elif action.type == ActionType.reject:
                    if action.reason == RejectReason.unparseable:
                        body = COMMENT_UNPARSEABLE
                    else:
                        body = comment_invalid(action.name_with_owner, self.config)
                    issue_cmd("comment", number, "--repo", repo, "--body", body)
                    issue_cmd("edit", number, "--repo", repo,
                              "--add-label", self.config.rejected_label,
                              "--remove-label", self.config.submission_label)
                    issue_cmd("close", number, "--repo", repo)
                    logger.info("issue #%s: rejected + closed", number)
            except GhError as e:
                logger.warning("issue #%s: action failed: %s", number, e)
