"""
Provides an adaptive rate limiter to back off when an origin answers 429
"Too Many Requests".
"""

import asyncio
import logging
import time
from typing import Optional

log = logging.getLogger(__name__)


class AdaptiveRateLimiter:
    """
    Spaces out requests to one origin and adjusts the rate based on 429 feedback.
    """

    def __init__(
        self,
        initial_calls_per_second: float = 20.0,
        max_calls_per_second: float = 40.0,
        recovery_after: float = 120.0,
    ):
        """
        Initializes the rate limiter.

        Args:
            initial_calls_per_second: The starting rate of calls per second.
            max_calls_per_second: The maximum rate to recover to.
            recovery_after: Seconds without a 429 before the rate starts recovering.
        """
        self._rate = initial_calls_per_second
        self._max_rate = max_calls_per_second
        self._recovery_after = recovery_after
        self._min_interval = 1.0 / self._rate
        self._last_call_time = 0.0
        self._last_429_time = 0.0
        self._pause_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    async def on_429(self, retry_after: Optional[float] = None) -> None:
        """
        Called when a 429 response is received. Halves the current request rate
        and honours the server's Retry-After hint, if any.
        """
        async with self._lock:
            self._rate = max(1.0, self._rate * 0.5)
            self._min_interval = 1.0 / self._rate
            self._last_429_time = time.monotonic()
            if retry_after:
                self._pause_until = max(
                    self._pause_until, time.monotonic() + retry_after
                )
            log.warning(
                f"[yellow]Rate limit hit. New rate: {self._rate:.1f} requests/s[/yellow]"
            )

    async def acquire(self) -> None:
        """
        Waits if necessary to respect the current rate before a request proceeds.
        """
        async with self._lock:
            now = time.monotonic()
            if now - self._last_429_time > self._recovery_after:
                self._rate = min(self._max_rate, self._rate * 1.01)
                self._min_interval = 1.0 / self._rate

            wait = max(
                self._pause_until - now,
                self._min_interval - (now - self._last_call_time),
            )
            if wait > 0:
                await asyncio.sleep(wait)

            self._last_call_time = time.monotonic()
