"""
retry.py - Bounded exponential backoff for remote store calls.

The helper knows nothing about any store: it takes a zero-argument
coroutine factory, a delay schedule and a sleep function, which keeps
it testable without a network.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from station_sync.config import RETRY_MAX_ATTEMPTS
from station_sync.errors import DuplicateKeyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int) -> float:
    """Seconds to wait before ``attempt`` (1-based): 0, 1, 2, 4, ..."""
    if attempt <= 1:
        return 0.0
    return float(2 ** (attempt - 2))


async def with_retry(
    attempt: Callable[[], Awaitable[T]],
    max_attempts: int = RETRY_MAX_ATTEMPTS,
    delays: Callable[[int], float] = backoff_delay,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    no_retry_on: tuple[type[BaseException], ...] = (DuplicateKeyError,),
) -> T:
    """
    Run ``attempt`` up to ``max_attempts`` times.

    Only the final attempt's error is propagated. Errors listed in
    ``no_retry_on`` are raised immediately since retrying cannot
    change their outcome.

    Raises:
        ValueError: If ``max_attempts`` is less than 1
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    for k in range(1, max_attempts + 1):
        if k > 1:
            delay = delays(k)
            logger.debug(f"Retry {k}/{max_attempts} in {delay}s")
            await sleep(delay)
        try:
            return await attempt()
        except no_retry_on:
            raise
        except retry_on as e:
            logger.debug(f"Attempt {k}/{max_attempts} failed: {e}")
            if k == max_attempts:
                raise
