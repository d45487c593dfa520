"""
Centralized retry and backoff policy for segment fetches.
"""

import asyncio
import random
from dataclasses import dataclass, field

import aiohttp

from dubsync_cli.exceptions import EmptySegmentError, SegmentSizeError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff with jitter.

    `delay_for(n)` is the pause after the n-th failed attempt:
    `min(max_delay, base_delay * 2 ** (n - 1))` plus up to `jitter` of that
    value again, drawn from `rng`.
    """

    max_attempts: int = 3
    base_delay: float = 1.5
    max_delay: float = 30.0
    jitter: float = 0.1
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("Retry delays and jitter must be non-negative.")

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            max_attempts=config.fetch_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        delay = min(self.max_delay, self.base_delay * (2 ** max(0, attempt - 1)))
        if self.jitter:
            delay += self.rng.uniform(0, delay * self.jitter)
        return delay

    @staticmethod
    def is_transient(exc: BaseException) -> bool:
        """Timeouts, resets, 5xx and 429 responses are worth another attempt."""
        if isinstance(exc, aiohttp.ClientResponseError):
            return exc.status >= 500 or exc.status == 429
        return isinstance(
            exc,
            (
                asyncio.TimeoutError,
                aiohttp.ClientConnectionError,
                aiohttp.ClientPayloadError,
                ConnectionResetError,
                EmptySegmentError,
                SegmentSizeError,
            ),
        )
