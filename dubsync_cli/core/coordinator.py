"""
Schedules segment fetches for every variant of a session over a shared worker pool.
"""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Mapping, Sequence

from dubsync_cli.exceptions import (
    AllVariantsFailedError,
    DuplicateSegmentError,
    FetchFailedError,
    VariantFailedError,
)
from dubsync_cli.media.fetcher import SegmentFetcher
from dubsync_cli.media.retry import RetryPolicy
from dubsync_cli.models.stats import (
    AcquisitionReport,
    AcquisitionStats,
    VariantOutcome,
    VariantStatus,
)
from dubsync_cli.models.variant import DecryptionKey, Variant
from dubsync_cli.storage.segment_store import SegmentStore

log = logging.getLogger(__name__)


class DownloadCoordinator:
    """
    Pulls (variant, segment) pairs from one queue with at most `max_workers`
    fetches in flight across all variants.

    A segment whose fetch fails transiently is requeued after a backoff delay
    up to `segment_retries` times. A permanent failure marks only its own
    variant as failed; the other variants keep going. Consumers can await
    `wait_ready()` to start working on a variant as soon as its store is
    complete.
    """

    def __init__(
        self,
        variants: Sequence[Variant],
        stores: Mapping[str, SegmentStore],
        fetcher: SegmentFetcher,
        keys: Mapping[str, DecryptionKey | None] | None = None,
        max_workers: int = 8,
        retry_policy: RetryPolicy | None = None,
        segment_retries: int = 2,
        cancel_event: asyncio.Event | None = None,
        stats: AcquisitionStats | None = None,
        sleep=asyncio.sleep,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1.")
        self.variants = {variant.id: variant for variant in variants}
        self.stores = stores
        self.fetcher = fetcher
        self.keys = dict(keys or {})
        self.max_workers = max_workers
        self.retry_policy = retry_policy or RetryPolicy()
        self.segment_retries = max(0, segment_retries)
        self.cancel_event = cancel_event or asyncio.Event()
        self.stats = stats or AcquisitionStats()
        self._sleep = sleep

        self._queue: asyncio.Queue[tuple[str, int]] = asyncio.Queue()
        self._outcomes = {
            vid: VariantOutcome(vid, total_segments=variant.segment_count)
            for vid, variant in self.variants.items()
        }
        self._ready = {vid: asyncio.Event() for vid in self.variants}
        self._pending: dict[str, set[int]] = {}
        self._failures: dict[tuple[str, int], int] = defaultdict(int)
        self._delayed: dict[str, set[asyncio.Task]] = defaultdict(set)
        self._settled = asyncio.Event()

        missing = [vid for vid in self.variants if vid not in self.stores]
        if missing:
            raise ValueError(f"No segment store for variants: {', '.join(missing)}")

    @property
    def outcomes(self) -> dict[str, VariantOutcome]:
        return self._outcomes

    async def wait_ready(self, variant_id: str) -> SegmentStore:
        """
        Waits until `variant_id` has settled and returns its complete store.

        Raises:
            VariantFailedError: The variant failed or was cancelled.
        """
        await self._ready[variant_id].wait()
        outcome = self._outcomes[variant_id]
        if outcome.status is not VariantStatus.COMPLETE:
            raise VariantFailedError(variant_id, outcome.error)
        return self.stores[variant_id]

    async def run(self) -> AcquisitionReport:
        """
        Acquires every variant and returns a report of per-variant outcomes.

        Raises:
            AllVariantsFailedError: No variant could be acquired.
        """
        start_time = time.monotonic()
        self._enqueue_missing()

        total_pending = sum(len(indices) for indices in self._pending.values())
        if total_pending:
            worker_count = min(self.max_workers, total_pending)
            log.info(
                f"Fetching {total_pending} segments for {len(self._pending)} "
                f"variant(s) with {worker_count} workers."
            )
            workers = [
                asyncio.create_task(self._worker(), name=f"segment-worker-{n}")
                for n in range(worker_count)
            ]
            settled = asyncio.create_task(self._settled.wait())
            cancelled = asyncio.create_task(self.cancel_event.wait())
            try:
                await asyncio.wait(
                    {settled, cancelled}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                pending_tasks = [settled, cancelled, *workers]
                for tasks in self._delayed.values():
                    pending_tasks.extend(tasks)
                for task in pending_tasks:
                    task.cancel()
                await asyncio.gather(*pending_tasks, return_exceptions=True)
                self._cancel_unsettled()

        report = AcquisitionReport(
            outcomes=self._outcomes,
            stats=self.stats,
            duration_s=time.monotonic() - start_time,
        )
        for vid, outcome in self._outcomes.items():
            outcome.completed_segments = self.stores[vid].completed_count
            if outcome.status is VariantStatus.FAILED:
                report.warnings.append(f"Variant '{vid}' failed: {outcome.error}")

        if self._outcomes and all(
            outcome.status is VariantStatus.FAILED
            for outcome in self._outcomes.values()
        ):
            raise AllVariantsFailedError(
                f"All {len(self._outcomes)} variants failed to download.", report
            )
        return report

    def _enqueue_missing(self) -> None:
        for vid, variant in self.variants.items():
            store = self.stores[vid]
            missing = store.missing_indices()
            resumed = variant.segment_count - len(missing)
            if resumed:
                self.stats.segments_resumed += resumed
            if not missing:
                log.info(f"[cyan]'{vid}' already complete on disk, skipping.[/cyan]")
                self._mark_complete(vid)
                continue
            if resumed:
                log.info(
                    f"Resuming '{vid}': {resumed}/{variant.segment_count} "
                    "segments already on disk."
                )
            self._pending[vid] = set(missing)
            for index in missing:
                self._queue.put_nowait((vid, index))

    async def _worker(self) -> None:
        while True:
            vid, index = await self._queue.get()
            if self._outcomes[vid].status is not VariantStatus.PENDING:
                continue  # dropped with its failed variant
            segment = self.variants[vid].segments[index]
            try:
                data = await self.fetcher.fetch(segment, self.keys.get(vid))
            except FetchFailedError as e:
                self._handle_fetch_failure(vid, index, e)
                continue

            if self._outcomes[vid].status is not VariantStatus.PENDING:
                continue
            try:
                written = await self.stores[vid].write(index, data)
            except (DuplicateSegmentError, OSError) as e:
                self._fail_variant(vid, e)
                continue
            if written:
                await self.stats.record_segment(len(data))

            pending = self._pending[vid]
            pending.discard(index)
            if not pending:
                self._mark_complete(vid)

    def _handle_fetch_failure(
        self, vid: str, index: int, error: FetchFailedError
    ) -> None:
        key = (vid, index)
        self._failures[key] += 1
        failures = self._failures[key]

        if error.retryable and failures <= self.segment_retries:
            self.stats.retries += 1
            delay = self.retry_policy.delay_for(failures)
            log.warning(
                f"Segment {index} of '{vid}' failed ({error.cause!r}); "
                f"requeueing in {delay:.1f}s ({failures}/{self.segment_retries})."
            )
            task = asyncio.create_task(self._requeue_later(vid, index, delay))
            self._delayed[vid].add(task)
            task.add_done_callback(self._delayed[vid].discard)
            return

        self.stats.segments_failed += 1
        self._fail_variant(vid, error)

    async def _requeue_later(self, vid: str, index: int, delay: float) -> None:
        await self._sleep(delay)
        if self._outcomes[vid].status is VariantStatus.PENDING:
            self._queue.put_nowait((vid, index))

    def _mark_complete(self, vid: str) -> None:
        outcome = self._outcomes[vid]
        outcome.status = VariantStatus.COMPLETE
        outcome.completed_segments = self.stores[vid].completed_count
        self._pending.pop(vid, None)
        log.info(
            f"[green]✓ '{vid}' acquired ({outcome.total_segments} segments)[/green]"
        )
        self._settle(vid)

    def _fail_variant(self, vid: str, error: BaseException) -> None:
        outcome = self._outcomes[vid]
        if outcome.status is not VariantStatus.PENDING:
            return
        outcome.status = VariantStatus.FAILED
        outcome.error = error
        self._pending.pop(vid, None)
        for task in self._delayed.pop(vid, set()):
            task.cancel()
        log.error(f"[red]✗ '{vid}' failed: {error}[/red]")
        self._settle(vid)

    def _cancel_unsettled(self) -> None:
        for vid, outcome in self._outcomes.items():
            if outcome.status is VariantStatus.PENDING:
                outcome.status = VariantStatus.CANCELLED
                self._ready[vid].set()

    def _settle(self, vid: str) -> None:
        self._ready[vid].set()
        if all(
            outcome.status is not VariantStatus.PENDING
            for outcome in self._outcomes.values()
        ):
            self._settled.set()
