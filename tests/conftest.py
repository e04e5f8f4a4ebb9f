"""Shared fixtures: a scripted gh executor, recorded sleeps, a temp site."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from adopters.sources.gh import GhClient, GhError


def gh_not_found(what: str = "") -> GhError:
    return GhError(f"gh command failed: HTTP 404: Not Found {what}".strip(), stderr="HTTP 404: Not Found")


class FakeGh:
    """Stand-in for `execute_gh`.

    Responses are keyed on the space-joined argument list, either exactly
    (`on`) or by prefix (`on_prefix`). Anything unrouted fails with a 404.
    A response is a string (stdout), any JSON-able value, or a GhError.
    Several responses are returned in turn; the last one then repeats.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self._exact: dict[str, list] = {}
        self._prefix: list[tuple[str, list]] = []

    def on(self, key: str, *responses) -> FakeGh:
        self._exact[key] = list(responses)
        return self

    def on_prefix(self, prefix: str, *responses) -> FakeGh:
        self._prefix.append((prefix, list(responses)))
        return self

    def calls_starting(self, prefix: str) -> list[list[str]]:
        return [c for c in self.calls if " ".join(c).startswith(prefix)]

    def __call__(self, args: list[str], timeout_ms: int) -> str:
        self.calls.append(list(args))
        key = " ".join(args)
        queue = self._exact.get(key)
        if queue is None:
            for prefix, q in self._prefix:
                if key.startswith(prefix):
                    queue = q
                    break
        if queue is None:
            raise gh_not_found(key)

        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, GhError):
            raise response
        if isinstance(response, str):
            return response
        return json.dumps(response)


def make_repo(
    full_name: str = "octo/widget",
    stars: int = 5,
    description: str | None = "A widget",
    language: str | None = "Python",
    default_branch: str = "main",
) -> dict:
    """Build a payload shaped like `gh api repos/<owner>/<name>`."""
    owner, name = full_name.split("/", 1)
    return {
        "name": name,
        "full_name": full_name,
        "description": description,
        "stargazers_count": stars,
        "language": language,
        "html_url": f"https://github.com/{full_name}",
        "default_branch": default_branch,
        "owner": {
            "login": owner,
            "avatar_url": f"https://avatars.githubusercontent.com/u/{len(owner)}?v=4",
        },
    }


def make_hit(full_name: str, path: str = "HALLUCINATE.md") -> dict:
    """Build one row of `gh search code --json repository,path`."""
    return {"path": path, "repository": {"nameWithOwner": full_name}}


def make_issue(
    number: int = 1,
    state: str = "open",
    title: str = "Add my repo",
    body: str | None = "",
) -> dict:
    return {"number": number, "state": state, "title": title, "body": body}


@pytest.fixture
def fake_gh() -> FakeGh:
    return FakeGh()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def gh(fake_gh: FakeGh, sleeps: list[float]) -> GhClient:
    """GhClient wired to the fake executor, recording instead of sleeping."""
    return GhClient(
        retries=5,
        base_delay_ms=100,
        exec_fn=fake_gh,
        sleep_fn=sleeps.append,
        jitter_fn=lambda: 0,
    )


@pytest.fixture
def site_root(tmp_path: Path) -> Path:
    (tmp_path / "_data").mkdir()
    return tmp_path
