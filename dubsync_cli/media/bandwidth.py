"""
Provides a shared token-bucket bandwidth budget for concurrent segment fetches.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

log = logging.getLogger(__name__)


class TokenBucket:
    """
    Byte-rate limiter shared by every fetcher of a session.

    Tokens are bytes. The bucket refills at `rate` bytes per second up to
    `capacity`, which is the burst tolerance. Consumers reserve their tokens
    up front under the lock and then sleep off any deficit, so concurrent
    consumers are served in arrival order and the aggregate rate never exceeds
    `rate` by more than `capacity`.

    A bucket created with `rate=None` never throttles.
    """

    def __init__(
        self,
        rate: float | None,
        capacity: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate is not None and rate <= 0:
            raise ValueError("Bandwidth rate must be positive or None.")
        self.rate = rate
        self.capacity = max(1.0, float(capacity if capacity is not None else rate or 1))
        self._clock = clock
        self._sleep = sleep
        self._tokens = self.capacity
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def unlimited(self) -> bool:
        return self.rate is None

    def _refill(self) -> None:
        """Adds tokens for the time elapsed since the last refill (must hold lock)."""
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
            self._last_refill = now

    async def available(self) -> float:
        """Current token balance; negative while consumers are sleeping off debt."""
        if self.unlimited:
            return float("inf")
        async with self._lock:
            self._refill()
            return self._tokens

    async def consume(self, amount: int) -> float:
        """
        Draws `amount` bytes from the budget, suspending until they are covered.

        Returns the time spent waiting, in seconds.
        """
        if self.unlimited or amount <= 0:
            return 0.0

        async with self._lock:
            self._refill()
            self._tokens -= amount
            deficit = -self._tokens

        if deficit <= 0:
            return 0.0
        wait = deficit / self.rate
        await self._sleep(wait)
        return wait
