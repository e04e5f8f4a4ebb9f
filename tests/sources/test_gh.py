"""Unit tests for the retrying gh executor.

All tests inject the executor and sleep -- no real gh calls, no real waits.
"""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from adopters.sources.gh import (
    ErrorKind,
    GhClient,
    GhError,
    Phase,
    RetryPolicy,
    RetryState,
    Step,
    classify_error,
    execute_gh,
    is_non_retryable,
    is_rate_limit_error,
    parse_retry_after,
)


def _err(stderr: str, message: str = "") -> GhError:
    return GhError(message, stderr=stderr)


class ScriptedExec:
    """Fails with the given errors in order, then returns stdout."""

    def __init__(self, *errors: GhError, stdout: str = "ok") -> None:
        self.errors = list(errors)
        self.stdout = stdout
        self.calls = 0

    def __call__(self, args, timeout_ms):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.stdout


class AlwaysFail:
    def __init__(self, stderr: str) -> None:
        self.stderr = stderr
        self.calls = 0

    def __call__(self, args, timeout_ms):
        self.calls += 1
        raise GhError(self.stderr, stderr=self.stderr)


def _client(exec_fn, sleeps: list, retries: int = 3, base: int = 100) -> GhClient:
    return GhClient(
        retries=retries,
        base_delay_ms=base,
        exec_fn=exec_fn,
        sleep_fn=sleeps.append,
        jitter_fn=lambda: 0,
    )


# -- Classification --


class TestClassification:
    @pytest.mark.parametrize("stderr", [
        "API rate limit exceeded",
        "You have exceeded a secondary rate limit",
        "abuse detection mechanism",
        "Retry-After: 60",
        "HTTP 403",
        "HTTP 429 Too Many Requests",
    ])
    def test_rate_limit_markers(self, stderr):
        assert is_rate_limit_error(_err(stderr))
        assert classify_error(_err(stderr)) == ErrorKind.rate_limited

    @pytest.mark.parametrize("stderr", [
        "HTTP 404",
        "Could not resolve to a Repository. Not Found",
        "authentication required",
        "Bad credentials",
        "HTTP 401",
    ])
    def test_non_retryable_markers(self, stderr):
        assert is_non_retryable(_err(stderr))
        assert classify_error(_err(stderr)) == ErrorKind.non_retryable

    def test_message_is_checked_too(self):
        assert is_rate_limit_error(_err("", message="API rate limit exceeded"))

    def test_non_retryable_checked_before_rate_limit(self):
        assert classify_error(_err("HTTP 404 after rate limit")) == ErrorKind.non_retryable

    def test_everything_else_is_transient(self):
        assert classify_error(_err("connection reset by peer")) == ErrorKind.transient

    def test_plain_exception_uses_str(self):
        assert classify_error(RuntimeError("HTTP 401")) == ErrorKind.non_retryable

    def test_missing_fields(self):
        assert not is_rate_limit_error(GhError(""))
        assert not is_non_retryable(GhError(""))


class TestParseRetryAfter:
    def test_header_form(self):
        assert parse_retry_after("Retry-After: 60") == 60_000

    def test_lowercase(self):
        assert parse_retry_after("retry-after: 30") == 30_000

    def test_space_variant(self):
        assert parse_retry_after("Retry After 120") == 120_000

    def test_absent(self):
        assert parse_retry_after("some other error") is None

    def test_empty_and_none(self):
        assert parse_retry_after("") is None
        assert parse_retry_after(None) is None


# -- Pure policy transitions --


class TestRetryPolicy:
    def _policy(self, retries=5, base=100, jitter=0.0):
        return RetryPolicy(retries=retries, base_delay_ms=base, jitter=lambda: jitter)

    def test_start_calls_immediately(self):
        state, action = self._policy().start()
        assert state.phase == Phase.attempting
        assert state.attempt == 0
        assert action.step == Step.call

    def test_success_finishes(self):
        policy = self._policy()
        state, action = policy.on_success(RetryState(attempt=2))
        assert state.phase == Phase.succeeded
        assert action.step == Step.finish

    def test_transient_backoff_doubles(self):
        policy = self._policy(jitter=42.0)
        state, action = policy.on_failure(RetryState(attempt=0), _err("boom"))
        assert state.phase == Phase.waiting
        assert state.attempt == 1
        assert action.step == Step.sleep
        assert action.delay_ms == 142.0

        state, _ = policy.on_wake(state)
        state, action = policy.on_failure(state, _err("boom"))
        assert state.attempt == 2
        assert action.delay_ms == 242.0

    def test_rate_limit_uses_retry_after(self):
        state, action = self._policy().on_failure(
            RetryState(attempt=0), _err("API rate limit exceeded. Retry-After: 10")
        )
        assert state.phase == Phase.rate_limited
        assert action.step == Step.sleep
        assert action.delay_ms == 10_000

    def test_rate_limit_fallback_uses_raw_attempt(self):
        policy = self._policy(jitter=999.0)
        _, first = policy.on_failure(RetryState(attempt=0), _err("HTTP 403 rate limit"))
        _, third = policy.on_failure(RetryState(attempt=2), _err("HTTP 403 rate limit"))
        # No jitter on the rate-limit path
        assert first.delay_ms == 100
        assert third.delay_ms == 400

    def test_non_retryable_fails_at_once(self):
        state, action = self._policy().on_failure(RetryState(attempt=0), _err("HTTP 404"))
        assert state.phase == Phase.failed
        assert action.step == Step.fail

    def test_exhausted_budget_fails_without_wait(self):
        state, action = self._policy(retries=2).on_failure(RetryState(attempt=2), _err("boom"))
        assert state.phase == Phase.failed
        assert action.step == Step.fail
        assert state.error is not None

    def test_wake_returns_to_attempting(self):
        state, action = self._policy().on_wake(RetryState(Phase.waiting, 3))
        assert state.phase == Phase.attempting
        assert state.attempt == 3
        assert action.step == Step.call


# -- Driver --


class TestGhClientRetry:
    def test_success_first_try(self):
        sleeps: list = []
        exec_fn = ScriptedExec(stdout="success")
        assert _client(exec_fn, sleeps).run(["x"]) == "success"
        assert exec_fn.calls == 1
        assert sleeps == []

    def test_two_transient_failures_then_success(self):
        sleeps: list = []
        exec_fn = ScriptedExec(_err("transient error"), _err("transient error"), stdout="recovered")
        assert _client(exec_fn, sleeps).run(["x"]) == "recovered"
        assert exec_fn.calls == 3
        # Two waits, both after a failure: base * 2^0, base * 2^1
        assert sleeps == [100, 200]

    def test_retries_then_raises_last_error(self):
        sleeps: list = []
        exec_fn = AlwaysFail("connection reset")
        with pytest.raises(GhError, match="connection reset"):
            _client(exec_fn, sleeps, retries=2).run(["x"])
        assert exec_fn.calls == 3
        assert len(sleeps) == 2

    def test_default_is_six_attempts(self):
        exec_fn = AlwaysFail("server error")
        client = GhClient(base_delay_ms=1, exec_fn=exec_fn, sleep_fn=lambda ms: None)
        with pytest.raises(GhError):
            client.run(["x"])
        assert exec_fn.calls == 6

    def test_non_retryable_single_attempt(self):
        sleeps: list = []
        exec_fn = AlwaysFail("HTTP 404")
        with pytest.raises(GhError, match="404"):
            _client(exec_fn, sleeps).run(["x"])
        assert exec_fn.calls == 1
        assert sleeps == []

    def test_bad_credentials_not_retried(self):
        exec_fn = AlwaysFail("Bad credentials")
        with pytest.raises(GhError):
            _client(exec_fn, []).run(["x"])
        assert exec_fn.calls == 1

    def test_rate_limit_waits_retry_after(self):
        sleeps: list = []
        exec_fn = ScriptedExec(_err("API rate limit exceeded. Retry-After: 10"))
        assert _client(exec_fn, sleeps).run(["x"]) == "ok"
        assert exec_fn.calls == 2
        assert sleeps == [10_000]

    def test_rate_limit_fallback_delay(self):
        sleeps: list = []
        exec_fn = ScriptedExec(_err("HTTP 403 rate limit"))
        _client(exec_fn, sleeps).run(["x"])
        assert sleeps == [100]

    def test_timeout_passed_to_exec(self):
        seen = []

        def exec_fn(args, timeout_ms):
            seen.append((args, timeout_ms))
            return "ok"

        GhClient(timeout_ms=1234, exec_fn=exec_fn, sleep_fn=lambda ms: None).run(["api", "x"])
        assert seen == [(["api", "x"], 1234)]


# -- Subprocess boundary --


class TestExecuteGh:
    def test_returns_stdout(self):
        with patch("adopters.sources.gh.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="[]", stderr="")
            assert execute_gh(["api", "repos/a/b"], 30_000) == "[]"

        cmd = mock_run.call_args[0][0]
        assert cmd == ["gh", "api", "repos/a/b"]
        assert mock_run.call_args.kwargs["timeout"] == 30

    def test_nonzero_exit_raises_with_stderr(self):
        with patch("adopters.sources.gh.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(
                returncode=1, stdout="", stderr="HTTP 404: Not Found\n"
            )
            with pytest.raises(GhError) as exc_info:
                execute_gh(["api", "repos/a/b"], 30_000)

        assert exc_info.value.stderr == "HTTP 404: Not Found"
        assert exc_info.value.returncode == 1

    def test_missing_binary_is_not_retried(self):
        with patch("adopters.sources.gh.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(GhError) as exc_info:
                execute_gh(["api", "x"], 1000)
        assert classify_error(exc_info.value) == ErrorKind.non_retryable

    @pytest.mark.parametrize("exc", [
        PermissionError(13, "Permission denied"),
        OSError(7, "Argument list too long"),
    ])
    def test_other_os_errors_become_gh_errors(self, exc):
        with patch("adopters.sources.gh.subprocess.run", side_effect=exc):
            with pytest.raises(GhError, match="could not be started") as exc_info:
                execute_gh(["api", "x"], 1000)
        assert exc_info.value.__cause__ is exc

    def test_timeout_is_transient(self):
        with patch(
            "adopters.sources.gh.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="gh", timeout=1),
        ):
            with pytest.raises(GhError) as exc_info:
                execute_gh(["api", "x"], 1000)
        assert classify_error(exc_info.value) == ErrorKind.transient


# -- JSON helpers --


class TestJsonHelpers:
    def test_search_code_args(self, gh, fake_gh):
        fake_gh.on(
            "search code filename:HALLUCINATE.md --json repository,path --limit 1000",
            [{"path": "HALLUCINATE.md", "repository": {"nameWithOwner": "a/b"}}],
        )
        results = gh.search_code("filename:HALLUCINATE.md")
        assert results[0]["repository"]["nameWithOwner"] == "a/b"

    def test_search_code_rejects_non_list(self, gh, fake_gh):
        fake_gh.on_prefix("search code", {"items": []})
        with pytest.raises(GhError):
            gh.search_code("filename:X")

    def test_invalid_json(self, gh, fake_gh):
        fake_gh.on("api repos/a/b", "not json")
        with pytest.raises(GhError, match="invalid JSON"):
            gh.api_get("repos/a/b")

    def test_paginated_follows_pages(self, gh, fake_gh):
        fake_gh.on("api repos/o/r/issues?state=all&per_page=2&page=1", [{"n": 1}, {"n": 2}])
        fake_gh.on("api repos/o/r/issues?state=all&per_page=2&page=2", [{"n": 3}])
        items = gh.api_get_paginated("repos/o/r/issues?state=all", per_page=2)
        assert [i["n"] for i in items] == [1, 2, 3]

    def test_paginated_without_query(self, gh, fake_gh):
        fake_gh.on("api repos/o/r/issues?per_page=100&page=1", [])
        assert gh.api_get_paginated("repos/o/r/issues") == []

    def test_paginated_error_propagates(self, gh, fake_gh):
        fake_gh.on("api repos/x/y/issues?per_page=100&page=1", GhError("HTTP 401", stderr="HTTP 401"))
        with pytest.raises(GhError):
            gh.api_get_paginated("repos/x/y/issues")
