"""Backoff policy for quota rejections.

Only quota errors are retried. Everything else (bad queries, auth failures,
missing blocks, reference resolution errors) propagates on the first
failure without consuming an attempt.
"""

import asyncio
import enum
from typing import Any, Awaitable, Callable, TypeVar

from ..models import RateLimitError, RetriesExhaustedError

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 8
DEFAULT_BASE_DELAY = 2.0

# Phrasing the Roam backend (and its SDKs) use when a graph's quota is hit
QUOTA_PATTERNS = ("too many requests", "rate limit", "quota exceeded")


class ErrorClass(enum.Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


def classify(error: BaseException) -> ErrorClass:
    """Return RETRYABLE for quota rejections, FATAL for everything else."""
    if isinstance(error, RateLimitError):
        return ErrorClass.RETRYABLE
    message = str(error).lower()
    if any(pattern in message for pattern in QUOTA_PATTERNS):
        return ErrorClass.RETRYABLE
    return ErrorClass.FATAL


def delay_for_attempt(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Exponential delay, ``base_delay * 2**attempt`` with a zero-based attempt."""
    return base_delay * (2 ** attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    classify: Callable[[BaseException], ErrorClass] = classify,
    delay: Callable[[int], float] = delay_for_attempt,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_retry: Callable[[int, float, BaseException], None] | None = None,
) -> T:
    """Await ``operation`` until it succeeds, a fatal error occurs or attempts run out.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        max_attempts: Total attempts including the first one
        classify: Decides whether a failure may be retried
        delay: Maps the zero-based retry index to a delay in seconds
        sleep: Awaitable sleep (tests inject a recorder)
        on_retry: Called with (attempt, delay, error) before each backoff sleep

    Raises:
        RetriesExhaustedError: every attempt failed with a retryable error
    """
    last_error: BaseException | None = None

    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as e:
            if classify(e) is ErrorClass.FATAL:
                raise
            last_error = e

        if attempt + 1 >= max_attempts:
            break

        wait = delay(attempt)
        if on_retry is not None:
            on_retry(attempt + 1, wait, last_error)
        await sleep(wait)

    assert last_error is not None
    raise RetriesExhaustedError(last_error, max_attempts) from last_error
