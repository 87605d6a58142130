"""Exponential backoff with jitter for transient provider and search failures."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_MARKERS = (
    "rate limit",
    "timeout",
    "timed out",
    "network",
    "econnreset",
    "econnrefused",
    "connection reset",
    "connection error",
    "socket hang up",
    "429",
    "500",
    "502",
    "503",
    "504",
    "temporarily unavailable",
    "service unavailable",
    "overloaded",
)


def is_retryable_error(exc: BaseException) -> bool:
    """True for rate limiting, timeouts, connection resets and 5xx responses."""
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: float = 0.25

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number attempt+1: base * multiplier^attempt, +/- jitter, capped."""
        delay = self.base_delay * (self.multiplier ** attempt)
        delay += delay * self.jitter * (random.random() * 2 - 1)
        return max(0.0, min(delay, self.max_delay))

    def should_retry(
        self,
        exc: BaseException,
        attempt: int,
        is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    ) -> bool:
        return attempt < self.max_retries and is_retryable(exc)


API_RETRY = RetryPolicy(max_retries=2, base_delay=1.0, max_delay=10.0)
SEARCH_RETRY = RetryPolicy(max_retries=1, base_delay=0.5, max_delay=2.0)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy = API_RETRY,
    *,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    on_retry: Callable[[BaseException, int, float], None] | None = None,
) -> T:
    """Await fn(), retrying transient failures per policy.

    Non-retryable errors and the error of the final attempt are re-raised as-is.
    on_retry receives (error, retry_number, delay_sec) before each sleep.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not policy.should_retry(exc, attempt, is_retryable):
                raise
            delay = policy.delay_for(attempt)
            attempt += 1
            logger.warning("Transient failure (%s), retry %d/%d in %.2fs", exc, attempt, policy.max_retries, delay)
            if on_retry:
                on_retry(exc, attempt, delay)
            await asyncio.sleep(delay)
