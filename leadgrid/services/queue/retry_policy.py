"""
Retry/backoff policy shared by every queue consumer.

Failures are split into transient ones (rate limits, network trouble,
timeouts, 5xx) that are retried with capped exponential backoff, and
permanent ones (bad JSON, validation, 4xx) that fail immediately.
"""

import json
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import NoReturn

import httpx
import openai
import pydantic

from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.services.external.errors import PermanentError, RetryableError

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    RetryableError,
    httpx.TimeoutException,
    httpx.NetworkError,
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
    ConnectionError,
    TimeoutError,
)

_PERMANENT_TYPES: tuple[type[BaseException], ...] = (
    PermanentError,
    json.JSONDecodeError,
    pydantic.ValidationError,
)

_RETRYABLE_MARKERS = (
    "rate limit",
    "too many requests",
    "network",
    "timeout",
    "timed out",
    "econnrefused",
    "econnreset",
)

_SERVER_ERROR_CODE = re.compile(r"\b50[023]\b")

_PERMANENT_MARKERS = ("json", "parse", "validation", "invalid")


@dataclass(slots=True, frozen=True)
class ErrorClass:
    retryable: bool
    kind: str


@dataclass(slots=True, frozen=True)
class RetryDecision:
    should_retry: bool
    reason: str
    delay_seconds: float = 0.0


def classify_error(exc: BaseException) -> ErrorClass:
    """Decide whether an exception is worth another attempt."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return ErrorClass(True, "rate_limit")
        if status >= 500:
            return ErrorClass(True, "server_error")
        return ErrorClass(False, "client_error")

    # Typed permanent checks run first: JSONDecodeError is also a ValueError.
    if isinstance(exc, _PERMANENT_TYPES):
        return ErrorClass(False, type(exc).__name__)
    if isinstance(exc, _RETRYABLE_TYPES):
        return ErrorClass(True, type(exc).__name__)

    # Project exceptions carry an explicit recoverable flag.
    recoverable = getattr(exc, "recoverable", None)
    if isinstance(recoverable, bool):
        return ErrorClass(recoverable, type(exc).__name__)

    message = str(exc).lower()
    if _SERVER_ERROR_CODE.search(message):
        return ErrorClass(True, "transient_message")
    if any(marker in message for marker in _RETRYABLE_MARKERS):
        return ErrorClass(True, "transient_message")
    if any(marker in message for marker in _PERMANENT_MARKERS):
        return ErrorClass(False, "permanent_message")

    return ErrorClass(True, "unknown")


class RetryPolicy:
    """Capped exponential backoff over a fixed attempt budget."""

    def __init__(
        self,
        base_delay: float,
        max_delay: float,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts

    def backoff(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (max(attempt, 1) - 1)), self.max_delay)

    def decide(self, exc: BaseException, attempt: int) -> RetryDecision:
        """
        Args:
            exc: the failure
            attempt: 1-based number of the attempt that just failed
        """
        error_class = classify_error(exc)
        if not error_class.retryable:
            return RetryDecision(False, f"non-retryable ({error_class.kind})")
        if attempt >= self.max_attempts:
            return RetryDecision(False, f"attempts exhausted ({attempt}/{self.max_attempts})")
        return RetryDecision(True, error_class.kind, self.backoff(attempt))

    def terminal_message(self, exc: BaseException, attempt: int) -> str:
        if classify_error(exc).retryable:
            return f"Failed after {attempt} attempts: {exc}"
        return str(exc)

    async def apply_failure(
        self,
        exc: BaseException,
        attempt: int,
        on_terminal: Callable[[str], Awaitable[None]],
    ) -> NoReturn:
        """
        Record a terminal failure on its owner, then re-raise.

        When the failure will be retried nothing is recorded; the caller's
        exception still propagates so the queue reschedules the job.
        """
        decision = self.decide(exc, attempt)
        if not decision.should_retry:
            message = self.terminal_message(exc, attempt)
            logger.warning("Terminal failure", attempt=attempt, reason=decision.reason, error=str(exc))
            await on_terminal(message)
        raise exc


POLICIES: dict[str, RetryPolicy] = {
    "crawl": RetryPolicy(base_delay=5.0, max_delay=20.0),
    "rating": RetryPolicy(base_delay=2.0, max_delay=8.0),
    "enrich": RetryPolicy(base_delay=2.0, max_delay=30.0),
    "crm": RetryPolicy(base_delay=2.0, max_delay=30.0),
}


def policy_for(queue_name: str, max_attempts: int | None = None) -> RetryPolicy:
    policy = POLICIES[queue_name]
    if max_attempts is None or max_attempts == policy.max_attempts:
        return policy
    return RetryPolicy(policy.base_delay, policy.max_delay, max_attempts)
