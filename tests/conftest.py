"""
Shared pytest fixtures for dubsync tests.
"""

from pathlib import Path

import pytest

from dubsync_cli.models.variant import DecryptionKey, Variant
from dubsync_cli.storage.segment_store import SegmentStore

from .fakes import build_variant


@pytest.fixture
def make_variant():
    """Factory for variants whose segment URLs follow `segment_url()`."""
    return build_variant


@pytest.fixture
def aes_key() -> DecryptionKey:
    return DecryptionKey(key_id="k1", key=bytes(range(16)))


@pytest.fixture
def store_root(tmp_path: Path) -> Path:
    root = tmp_path / "segments"
    root.mkdir()
    return root


@pytest.fixture
def open_store(store_root: Path):
    """Opens (or reopens) the segment store of a variant under `store_root`."""

    def _open(variant: Variant) -> SegmentStore:
        return SegmentStore.reopen(variant, store_root)

    return _open
