"""
Generic retry helper for async operations.

The policy object decides how many attempts are made and how long to wait
between them; retry_async applies it to any awaitable factory.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 2000


def linear_delay(base_delay_ms: int) -> Callable[[int], int]:
    """Return a delay function waiting base_delay_ms * attempt."""

    def delay(attempt: int) -> int:
        return base_delay_ms * attempt

    return delay


@dataclass
class RetryPolicy:
    """
    Bounded retry schedule.

    Attributes:
        max_attempts: Total number of attempts, including the first one
        base_delay_ms: Base delay used by the default linear schedule
        delay_fn: Optional override mapping a failed attempt number (1-based)
            to the wait in milliseconds before the next attempt
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    delay_fn: Optional[Callable[[int], int]] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_ms(self, attempt: int) -> int:
        if self.delay_fn is not None:
            return self.delay_fn(attempt)
        return linear_delay(self.base_delay_ms)(attempt)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Run an async operation under a retry policy.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        policy: Attempt count and delay schedule
        sleep: Coroutine used to wait between attempts (seconds)
        should_retry: Predicate deciding if an error may be retried at all
        on_retry: Called with (failed attempt number, error) before waiting

    Returns:
        The operation's result from the first successful attempt

    Raises:
        The error of the last attempt, or the first non-retryable error
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not should_retry(e):
                raise
            if attempt >= policy.max_attempts:
                raise
            if on_retry is not None:
                on_retry(attempt, e)
            delay = policy.delay_ms(attempt)
            logger.debug("Attempt %d failed, retrying in %d ms", attempt, delay)
            await sleep(delay / 1000.0)

    # max_attempts >= 1 guarantees the loop returns or raises
    raise RuntimeError("unreachable")
