"""
Retry policy for profile loading.

The policy only decides; the caller owns the sleeping, so the decision logic
can be exercised without any timer.
"""
from typing import Callable, Optional

from waxradio.exceptions import ErrorKind, classify_error

# Kinds that retrying cannot fix without a rules/config change or new input.
FATAL_KINDS = frozenset({ErrorKind.PERMISSION, ErrorKind.VALIDATION})


class RetryDecision:
    """Tagged result of evaluating an attempt: ok, retry or fatal."""

    OK = "ok"
    RETRY = "retry"
    FATAL = "fatal"

    def __init__(self, tag: str, delay: float = 0.0, kind: Optional[ErrorKind] = None):
        self.tag = tag
        self.delay = delay
        self.kind = kind

    @classmethod
    def ok(cls) -> "RetryDecision":
        return cls(cls.OK)

    @classmethod
    def retry(cls, delay: float) -> "RetryDecision":
        return cls(cls.RETRY, delay=delay)

    @classmethod
    def fatal(cls, kind: ErrorKind) -> "RetryDecision":
        return cls(cls.FATAL, kind=kind)

    @property
    def is_ok(self) -> bool:
        return self.tag == self.OK

    @property
    def is_retry(self) -> bool:
        return self.tag == self.RETRY

    @property
    def is_fatal(self) -> bool:
        return self.tag == self.FATAL

    def __repr__(self):
        if self.is_retry:
            return f"Retry({self.delay})"
        if self.is_fatal:
            return f"Fatal({self.kind.value})"
        return "Ok"


def linear_backoff(step: float) -> Callable[[int], float]:
    """Backoff of ``attempt * step`` seconds."""
    def backoff(attempt: int) -> float:
        return attempt * step
    return backoff


class RetryPolicy:
    """
    Bounded retry with a pluggable backoff.

    Args:
        max_attempts: Total attempts including the first one
        backoff: Seconds to wait after the given (1-based) failed attempt
    """

    def __init__(self, max_attempts: int = 3, backoff: Optional[Callable[[int], float]] = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff or linear_backoff(1.0)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.profile_fetch_max_attempts,
            backoff=linear_backoff(settings.profile_fetch_backoff_seconds),
        )

    def evaluate(self, attempt: int, error: Optional[BaseException] = None) -> RetryDecision:
        """Decide what follows ``attempt`` (1-based), which raised ``error`` or succeeded."""
        if error is None:
            return RetryDecision.ok()
        kind = classify_error(error)
        if kind in FATAL_KINDS or attempt >= self.max_attempts:
            return RetryDecision.fatal(kind)
        return RetryDecision.retry(self.backoff(attempt))
