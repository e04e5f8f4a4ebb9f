"""Retrying executor for the `gh` CLI.

Every GitHub call goes through `GhClient.run`, which classifies failures and
retries them with exponential backoff. The retry policy itself is a pure state
machine (`RetryPolicy`) so backoff decisions can be tested without sleeping:
the driver in `GhClient.run` only performs the actions the policy returns.
"""

from __future__ import annotations

import json
import logging
import random
import re
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 5
DEFAULT_BASE_DELAY_MS = 2000
DEFAULT_TIMEOUT_MS = 30_000
MAX_JITTER_MS = 500

# Checked before the rate-limit markers: "HTTP 404" must never be retried
_NON_RETRYABLE_MARKERS = ("404", "not found", "authentication", "bad credentials", "401")
_RATE_LIMIT_MARKERS = (
    "rate limit",
    "secondary rate limit",
    "abuse detection",
    "retry-after",
    "403",
    "429",
)
_RETRY_AFTER_RE = re.compile(r"retry[- ]after[:\s]+(\d+)", re.IGNORECASE)


class GhError(Exception):
    """Raised when a gh invocation fails."""

    def __init__(
        self,
        message: str,
        stderr: str = "",
        stdout: str = "",
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stderr = stderr
        self.stdout = stdout
        self.returncode = returncode


class ErrorKind(str, Enum):
    non_retryable = "non-retryable"
    rate_limited = "rate-limited"
    transient = "transient"


def _error_text(err: BaseException) -> str:
    stderr = getattr(err, "stderr", "") or ""
    message = getattr(err, "message", None)
    if message is None:
        message = str(err)
    return (str(stderr) + str(message or "")).lower()


def is_non_retryable(err: BaseException) -> bool:
    text = _error_text(err)
    return any(marker in text for marker in _NON_RETRYABLE_MARKERS)


def is_rate_limit_error(err: BaseException) -> bool:
    text = _error_text(err)
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)


def classify_error(err: BaseException) -> ErrorKind:
    if is_non_retryable(err):
        return ErrorKind.non_retryable
    if is_rate_limit_error(err):
        return ErrorKind.rate_limited
    return ErrorKind.transient


def parse_retry_after(text: str | None) -> int | None:
    """Return the Retry-After wait in milliseconds, or None if absent."""
    if not text:
        return None
    m = _RETRY_AFTER_RE.search(text)
    if m:
        return int(m.group(1)) * 1000
    return None


# -- Retry state machine --


class Phase(str, Enum):
    attempting = "attempting"
    waiting = "waiting"
    rate_limited = "rate-limited"
    failed = "failed"
    succeeded = "succeeded"


class Step(str, Enum):
    call = "call"
    sleep = "sleep"
    finish = "return"
    fail = "raise"


@dataclass(frozen=True)
class RetryState:
    phase: Phase = Phase.attempting
    attempt: int = 0  # zero-based index of the current (or next) attempt
    error: BaseException | None = None


@dataclass(frozen=True)
class RetryAction:
    step: Step
    delay_ms: float = 0.0


class RetryPolicy:
    """Pure transitions for one retried call.

    `start()` yields the first call; `on_success`, `on_failure` and `on_wake`
    each map the current state plus an outcome to the next state and the
    action the driver must take.
    """

    def __init__(
        self,
        retries: int = DEFAULT_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        jitter: Callable[[], float] | None = None,
    ) -> None:
        self.retries = retries
        self.base_delay_ms = base_delay_ms
        self.jitter = jitter or (lambda: random.random() * MAX_JITTER_MS)

    def start(self) -> tuple[RetryState, RetryAction]:
        return RetryState(), RetryAction(Step.call)

    def on_success(self, state: RetryState) -> tuple[RetryState, RetryAction]:
        return RetryState(Phase.succeeded, state.attempt), RetryAction(Step.finish)

    def on_failure(
        self, state: RetryState, err: BaseException
    ) -> tuple[RetryState, RetryAction]:
        kind = classify_error(err)
        failed = RetryState(Phase.failed, state.attempt, err)
        if kind == ErrorKind.non_retryable or state.attempt >= self.retries:
            return failed, RetryAction(Step.fail)

        next_attempt = state.attempt + 1
        if kind == ErrorKind.rate_limited:
            wait = parse_retry_after(getattr(err, "stderr", "") or "")
            if wait is None:
                wait = parse_retry_after(getattr(err, "message", "") or "")
            if wait is None:
                wait = self.base_delay_ms * 2 ** state.attempt
            return (
                RetryState(Phase.rate_limited, next_attempt, err),
                RetryAction(Step.sleep, wait),
            )

        delay = self.base_delay_ms * 2 ** (next_attempt - 1) + self.jitter()
        return RetryState(Phase.waiting, next_attempt, err), RetryAction(Step.sleep, delay)

    def on_wake(self, state: RetryState) -> tuple[RetryState, RetryAction]:
        return RetryState(Phase.attempting, state.attempt, state.error), RetryAction(Step.call)


# -- Execution --


def execute_gh(args: list[str], timeout_ms: int) -> str:
    """Run `gh <args>` once and return stdout."""
    cmd = ["gh", *args]
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=timeout_ms / 1000,
        )
    except FileNotFoundError:
        raise GhError("gh CLI not found. Install it: https://cli.github.com/")
    except subprocess.TimeoutExpired:
        raise GhError(f"gh command timed out after {timeout_ms}ms")
    except OSError as e:
        raise GhError(f"gh could not be started: {e}") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise GhError(
            f"gh command failed: {stderr}",
            stderr=stderr,
            stdout=result.stdout or "",
            returncode=result.returncode,
        )
    return result.stdout


def sleep_ms(ms: float) -> None:
    time.sleep(ms / 1000)


class GhClient:
    """gh CLI wrapper with retry, backoff and rate-limit waits."""

    def __init__(
        self,
        retries: int = DEFAULT_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        exec_fn: Callable[[list[str], int], str] | None = None,
        sleep_fn: Callable[[float], None] | None = None,
        jitter_fn: Callable[[], float] | None = None,
    ) -> None:
        self.timeout_ms = timeout_ms
        self.policy = RetryPolicy(retries, base_delay_ms, jitter_fn)
        self._exec = exec_fn or execute_gh
        self._sleep = sleep_fn or sleep_ms

    def run(self, args: list[str]) -> str:
        """Run a gh command until it succeeds or the policy gives up."""
        state, action = self.policy.start()
        output = ""
        while True:
            if action.step == Step.call:
                try:
                    output = self._exec(args, self.timeout_ms)
                except GhError as e:
                    state, action = self.policy.on_failure(state, e)
                else:
                    state, action = self.policy.on_success(state)
            elif action.step == Step.sleep:
                if state.phase == Phase.rate_limited:
                    logger.warning("rate limited, waiting %dms...", round(action.delay_ms))
                else:
                    logger.info(
                        "retry %d/%d in %dms...",
                        state.attempt, self.policy.retries, round(action.delay_ms),
                    )
                self._sleep(action.delay_ms)
                state, action = self.policy.on_wake(state)
            elif action.step == Step.finish:
                return output
            elif state.error is not None:
                raise state.error
            else:
                raise GhError(f"gh {' '.join(args)} failed")

    def run_json(self, args: list[str]) -> Any:
        raw = self.run(args)
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise GhError(f"gh returned invalid JSON: {e}", stdout=raw) from e

    def search_code(self, query: str, limit: int = 1000) -> list[dict]:
        """`gh search code <query> --json repository,path --limit <n>`"""
        data = self.run_json(
            ["search", "code", query, "--json", "repository,path", "--limit", str(limit)]
        )
        if not isinstance(data, list):
            raise GhError(f"Unexpected search response: {type(data).__name__}")
        return data

    def api_get(self, endpoint: str) -> Any:
        """`gh api <endpoint>`"""
        return self.run_json(["api", endpoint])

    def api_get_paginated(self, endpoint: str, per_page: int = 100) -> list:
        """Follow `page=` for a list endpoint until a short page comes back."""
        sep = "&" if "?" in endpoint else "?"
        items: list = []
        page = 1
        while True:
            data = self.api_get(f"{endpoint}{sep}per_page={per_page}&page={page}")
            if not isinstance(data, list):
                raise GhError(f"Unexpected list response: {type(data).__name__}")
            items.extend(data)
            if len(data) < per_page:
                return items
            page += 1
