"""
Bounded retry with capped exponential backoff for transient network failures.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from livestream_dl.exceptions import DownloadError

log = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before the attempt following `attempt` (1-based)."""
    return min(max_delay, base_delay * (2 ** (attempt - 1)))


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    description: str = "request",
    should_stop: Optional[Callable[[], bool]] = None,
) -> T:
    """
    Runs `operation` until it succeeds, raises a non-retryable error, or
    `attempts` have been made. The last error is re-raised on exhaustion.

    `should_stop` is checked between attempts; when it returns True the last
    error is raised without sleeping again.
    """
    last_exception: Optional[DownloadError] = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except DownloadError as e:
            if not e.retryable:
                raise
            last_exception = e
            log.debug(f"Attempt {attempt}/{attempts} for {description} failed: {e}")
            if attempt == attempts or (should_stop and should_stop()):
                break
            await asyncio.sleep(backoff_delay(attempt, base_delay, max_delay))
    raise last_exception
