"""Pydantic v2 models for scan inputs, issue housekeeping, and the registry."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# -- Discovery --


class SearchHit(BaseModel):
    path: str
    repository: str  # "owner/name"

    @classmethod
    def from_raw(cls, raw: Any) -> SearchHit | None:
        """Build a hit from one `gh search code` row, or None if malformed."""
        if not isinstance(raw, dict):
            return None
        path = raw.get("path")
        repository = raw.get("repository")
        name = repository.get("nameWithOwner") if isinstance(repository, dict) else None
        if not isinstance(path, str) or not path:
            return None
        if not isinstance(name, str) or not name:
            return None
        return cls(path=path, repository=name)


class RepoRef(BaseModel):
    """A repository identity plus the path of its marker file."""

    name_with_owner: str
    file_path: str


# -- Issue submissions --


class IssueState(str, Enum):
    open = "open"
    closed = "closed"


class IssueSubmission(BaseModel):
    number: int
    state: IssueState
    title: str | None = None
    body: str | None = None

    @property
    def is_open(self) -> bool:
        return self.state == IssueState.open


class SubmissionState(str, Enum):
    new = "new"
    verified = "verified"
    unparseable = "unparseable"
    not_found = "not-found"


class ActionType(str, Enum):
    close_valid = "close-valid"
    reject = "reject"


class RejectReason(str, Enum):
    not_found = "not-found"
    unparseable = "unparseable"


class IssueAction(BaseModel):
    number: int
    type: ActionType
    name_with_owner: str | None = None
    reason: RejectReason | None = None


# -- Registry --


class AdopterEntry(BaseModel):
    owner: str = ""
    repo: str = ""
    full_name: str = ""
    description: str = ""
    stars: int = Field(default=0, ge=0)
    language: str = ""
    avatar: str = ""
    url: str = ""
    default_branch: str = ""
    file_url: str = ""
    file_path: str = ""
    date_added: str = ""
