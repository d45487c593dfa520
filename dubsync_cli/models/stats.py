"""
Dataclasses for tracking acquisition statistics and per-variant outcomes.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum


class VariantStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class AcquisitionStats:
    """Tracks statistics for an acquisition session, including real-time speed."""

    segments_fetched: int = 0
    segments_resumed: int = 0
    segments_failed: int = 0
    retries: int = 0
    total_bytes: int = 0

    # Real-time speed calculation fields
    current_speed_bps: float = 0.0
    peak_speed_bps: float = 0.0
    _speed_samples: list[float] = field(default_factory=list, repr=False)
    _last_progress_time: float = field(default=0.0, repr=False)
    _last_progress_bytes: int = field(default=0, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self):
        self._last_progress_time = time.monotonic()

    async def record_segment(self, size: int) -> None:
        """Counts a fetched segment and refreshes the rolling speed estimate."""
        async with self._lock:
            self.segments_fetched += 1
            self.total_bytes += size
            now = time.monotonic()
            elapsed = now - self._last_progress_time

            # Update speed roughly twice per second
            if elapsed > 0.5:
                bytes_diff = self.total_bytes - self._last_progress_bytes
                if bytes_diff > 0:
                    self._speed_samples.append(bytes_diff / elapsed)
                    # Keep a sliding window of the last 10 speed samples
                    if len(self._speed_samples) > 10:
                        self._speed_samples.pop(0)
                    self.current_speed_bps = sum(self._speed_samples) / len(
                        self._speed_samples
                    )
                    self.peak_speed_bps = max(
                        self.peak_speed_bps, self.current_speed_bps
                    )
                self._last_progress_time = now
                self._last_progress_bytes = self.total_bytes


@dataclass
class VariantOutcome:
    """Final state of one variant after the coordinator has run."""

    variant_id: str
    status: VariantStatus = VariantStatus.PENDING
    error: BaseException | None = None
    completed_segments: int = 0
    total_segments: int = 0


@dataclass
class AcquisitionReport:
    """What the coordinator hands back to the session boundary."""

    outcomes: dict[str, VariantOutcome]
    stats: AcquisitionStats
    duration_s: float = 0.0
    warnings: list[str] = field(default_factory=list)

    @property
    def completed(self) -> list[str]:
        return [
            vid
            for vid, outcome in self.outcomes.items()
            if outcome.status is VariantStatus.COMPLETE
        ]

    @property
    def failed(self) -> dict[str, BaseException | None]:
        return {
            vid: outcome.error
            for vid, outcome in self.outcomes.items()
            if outcome.status is VariantStatus.FAILED
        }

    @property
    def cancelled(self) -> bool:
        return any(
            outcome.status is VariantStatus.CANCELLED
            for outcome in self.outcomes.values()
        )
