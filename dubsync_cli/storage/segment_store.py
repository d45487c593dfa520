"""
Per-variant on-disk buffer of decrypted segments with crash-safe resume.

Each segment lives in its own chunk file named after its sequence index. Chunks
are written to a `.part` file and renamed into place, so a chunk file on disk is
always complete. Reopening a store rebuilds its completion bitmap from the chunk
files that survived a previous run.
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path

import aiofiles

from dubsync_cli.exceptions import DuplicateSegmentError, IncompleteTrackError
from dubsync_cli.models.variant import Variant

log = logging.getLogger(__name__)

CHUNK_SUFFIX = ".seg"
PARTIAL_SUFFIX = ".part"
EXPORT_CHUNK_SIZE = 1048576  # 1 MB


class SegmentStore:
    """
    Append-only store of one variant's decrypted segments.

    Segments may arrive in any order; `read_all()` and `export()` always emit
    them in sequence-index order. Use `SegmentStore.reopen()` to obtain an
    instance.
    """

    def __init__(self, variant_id: str, directory: Path, segment_count: int):
        self.variant_id = variant_id
        self.directory = directory
        self.segment_count = segment_count
        self._completed = bytearray(segment_count)
        self._sizes: dict[int, int] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def reopen(cls, variant: Variant, root: Path) -> "SegmentStore":
        """
        Opens the store for `variant` under `root`, creating it if needed.

        Existing chunk files are scanned to rebuild the completion bitmap;
        leftover partial writes and chunks outside the variant's index range
        are removed.
        """
        directory = root / variant.id
        directory.mkdir(parents=True, exist_ok=True)
        store = cls(variant.id, directory, variant.segment_count)

        for entry in directory.iterdir():
            if entry.name.endswith(PARTIAL_SUFFIX):
                entry.unlink(missing_ok=True)
                continue
            if entry.suffix != CHUNK_SUFFIX:
                continue
            try:
                index = int(entry.stem)
            except ValueError:
                log.debug(f"Ignoring unexpected file in segment store: {entry.name}")
                continue
            size = entry.stat().st_size
            if not 0 <= index < store.segment_count or size == 0:
                entry.unlink(missing_ok=True)
                continue
            store._completed[index] = 1
            store._sizes[index] = size

        if store._sizes:
            log.debug(
                f"Reopened store for '{variant.id}' with "
                f"{store.completed_count}/{store.segment_count} segments on disk."
            )
        return store

    def chunk_path(self, index: int) -> Path:
        return self.directory / f"{index:08d}{CHUNK_SUFFIX}"

    @property
    def completed_count(self) -> int:
        return len(self._sizes)

    @property
    def total_bytes(self) -> int:
        return sum(self._sizes.values())

    def has_segment(self, index: int) -> bool:
        return 0 <= index < self.segment_count and bool(self._completed[index])

    def is_complete(self) -> bool:
        """True only when every index in [0, segment_count) holds non-empty bytes."""
        return all(self._completed) and all(
            self._sizes.get(i, 0) > 0 for i in range(self.segment_count)
        )

    def missing_indices(self) -> list[int]:
        return [i for i, done in enumerate(self._completed) if not done]

    async def write(self, index: int, data: bytes) -> bool:
        """
        Stores the decrypted bytes of segment `index`.

        Returns True if the segment was newly written and False if identical
        bytes were already present.

        Raises:
            DuplicateSegmentError: The index already holds different bytes.
            ValueError: The index is out of range or the data is empty.
        """
        if not 0 <= index < self.segment_count:
            raise ValueError(
                f"Segment index {index} is out of range for '{self.variant_id}' "
                f"(0..{self.segment_count - 1})."
            )
        if not data:
            raise ValueError(f"Refusing to store empty segment {index}.")

        async with self._lock:
            path = self.chunk_path(index)
            if self._completed[index]:
                if self._sizes[index] != len(data):
                    raise DuplicateSegmentError(self.variant_id, index)
                async with aiofiles.open(path, "rb") as f:
                    existing = await f.read()
                if existing != data:
                    raise DuplicateSegmentError(self.variant_id, index)
                return False

            partial_path = path.with_name(path.name + PARTIAL_SUFFIX)
            async with aiofiles.open(partial_path, "wb") as f:
                await f.write(data)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            await asyncio.to_thread(os.replace, partial_path, path)

            self._completed[index] = 1
            self._sizes[index] = len(data)
            return True

    def _ensure_complete(self) -> None:
        if not self.is_complete():
            raise IncompleteTrackError(self.variant_id, self.missing_indices())

    async def read_all(self) -> bytes:
        """
        Returns the whole track as one byte string in sequence-index order.

        Raises:
            IncompleteTrackError: Some segments have not been written yet.
        """
        self._ensure_complete()
        parts = []
        for index in range(self.segment_count):
            async with aiofiles.open(self.chunk_path(index), "rb") as f:
                parts.append(await f.read())
        return b"".join(parts)

    async def export(self, destination: Path) -> int:
        """
        Streams the reassembled track into `destination` without loading it
        into memory at once. Returns the number of bytes written.
        """
        self._ensure_complete()
        written = 0
        async with aiofiles.open(destination, "wb") as out:
            for index in range(self.segment_count):
                async with aiofiles.open(self.chunk_path(index), "rb") as f:
                    while chunk := await f.read(EXPORT_CHUNK_SIZE):
                        await out.write(chunk)
                        written += len(chunk)
        log.debug(f"Exported '{self.variant_id}' ({written} bytes) to {destination}")
        return written

    def discard(self) -> None:
        """Deletes every chunk of this variant from disk."""
        shutil.rmtree(self.directory, ignore_errors=True)
        self._completed = bytearray(self.segment_count)
        self._sizes.clear()
