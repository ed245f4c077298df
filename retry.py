import asyncio
import random
from typing import Awaitable, Callable, TypeVar

import structlog

from config import RETRY_ATTEMPTS, RETRY_BASE_DELAY, RETRY_MAX_JITTER

log = structlog.get_logger()

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Only errors that declare themselves transient are worth another attempt."""
    return bool(getattr(exc, "transient", False))


def backoff_delay(attempt: int, base_delay: float = RETRY_BASE_DELAY, max_jitter: float = RETRY_MAX_JITTER) -> float:
    """Exponential delay before retry number ``attempt`` (1-based), plus random jitter."""
    return base_delay * 2 ** (attempt - 1) + random.uniform(0, max_jitter)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int = RETRY_ATTEMPTS,
    base_delay: float = RETRY_BASE_DELAY,
    max_jitter: float = RETRY_MAX_JITTER,
    is_retryable: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``operation()`` up to ``attempts`` times.

    Non-retryable errors and the error from the final attempt are re-raised
    unchanged. Cancellation is never retried.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt >= attempts or not is_retryable(e):
                raise
            delay = backoff_delay(attempt, base_delay, max_jitter)
            log.warning("Retrying After Transient Failure",
                        attempt=attempt,
                        max_attempts=attempts,
                        delay=round(delay, 3),
                        error=str(e))
            await sleep(delay)
