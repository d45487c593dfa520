"""
Session boundary around one output target: lock, temp state and cleanup.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Sequence

from dubsync_cli.exceptions import AcquisitionCancelledError
from dubsync_cli.models.variant import Variant
from dubsync_cli.storage.segment_store import SegmentStore
from dubsync_cli.storage.session_lock import SessionLock, temp_dir_for

log = logging.getLogger(__name__)

_CANCELLATION_TYPES = (
    asyncio.CancelledError,
    KeyboardInterrupt,
    AcquisitionCancelledError,
)


class AcquisitionSession:
    """
    Async context manager owning everything a run leaves next to its target.

    On entry the session lock is taken and segment stores are reopened from
    the temp directory. Stale state is discarded unless `resume` is set and the
    previous run acquired the same set of variants. On exit the temp directory
    is removed, except after a cancellation with `resume` set, in which case it
    is kept for the next run.
    """

    def __init__(self, target: Path, variants: Sequence[Variant], resume: bool = False):
        self.target = Path(target)
        self.variants = list(variants)
        self.resume = resume
        self.lock = SessionLock(self.target)
        self.temp_dir = temp_dir_for(self.lock.target)
        self.stores: dict[str, SegmentStore] = {}
        self.preserved = False

    @property
    def segments_dir(self) -> Path:
        return self.temp_dir / "segments"

    @property
    def tracks_dir(self) -> Path:
        return self.temp_dir / "tracks"

    async def __aenter__(self) -> "AcquisitionSession":
        variant_ids = [variant.id for variant in self.variants]
        self.lock.acquire(variant_ids)
        try:
            if self.temp_dir.exists() and not self._can_resume(variant_ids):
                log.info(f"Discarding stale session state in {self.temp_dir}")
                await asyncio.to_thread(shutil.rmtree, self.temp_dir, True)
            self.tracks_dir.mkdir(parents=True, exist_ok=True)
            self.stores = {
                variant.id: SegmentStore.reopen(variant, self.segments_dir)
                for variant in self.variants
            }
        except BaseException:
            self.lock.release()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        cancelled = exc_type is not None and issubclass(exc_type, _CANCELLATION_TYPES)
        self.preserved = cancelled and self.resume
        try:
            if self.preserved:
                log.warning(
                    f"[yellow]Session interrupted. Partial downloads kept in "
                    f"{self.temp_dir}; rerun with --resume to continue.[/yellow]"
                )
            else:
                await asyncio.to_thread(shutil.rmtree, self.temp_dir, True)
        finally:
            self.lock.release(remove_marker=not self.preserved)
        return False

    def _can_resume(self, variant_ids: list[str]) -> bool:
        if not self.resume:
            return False
        previous = self.lock.previous_state
        if not previous:
            return False
        return previous.get("variants") == sorted(variant_ids)
