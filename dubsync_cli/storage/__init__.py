"""
Storage Layer.

This package handles all data persistence: the per-variant segment stores,
the session lock and marker files, and the configuration file.
"""

from .config_manager import ConfigManager
from .segment_store import SegmentStore
from .session_lock import SessionLock, marker_path_for, temp_dir_for

__all__ = [
    "ConfigManager",
    "SegmentStore",
    "SessionLock",
    "marker_path_for",
    "temp_dir_for",
]
