"""
Retry-with-backoff combinator for async operations.

The combinator knows nothing about feeds or HTTP: it re-runs a zero-argument
coroutine factory until it succeeds, the attempt budget is spent, or the
error is classified as permanent.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from news_relay.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """All attempts of a retried operation failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before the retry that follows a failed attempt.

    Args:
        attempt: 1-based number of the attempt that just failed
        base_delay: Delay after the first failure

    Returns:
        base_delay * 2 ** (attempt - 1), e.g. 1s, 2s, 4s
    """
    return base_delay * (2 ** (attempt - 1))


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    base_delay: float = 1.0,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run an async operation, retrying failures with exponential backoff.

    Attempts are strictly sequential. Cancellation is never retried.

    Args:
        operation: Factory returning a fresh awaitable for every attempt
        max_attempts: Total number of attempts, at least 1
        base_delay: Delay after the first failure, doubled for each further one
        should_retry: Returns False for errors that must not be retried
        sleep: Awaitable sleep, injectable for tests
        label: Name used in log messages

    Returns:
        The operation's result

    Raises:
        RetryExhausted: Every attempt failed, or a permanent error occurred
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if should_retry is not None and not should_retry(e):
                logger.warning(f"{label}: permanent error on attempt {attempt}: {e}")
                raise RetryExhausted(attempt, e) from e
            if attempt >= max_attempts:
                raise RetryExhausted(attempt, e) from e

            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                f"{label}: attempt {attempt}/{max_attempts} failed ({e}), retrying in {delay:.1f}s"
            )
            await sleep(delay)
