"""
Exclusive, advisory per-target session locking and resume bookkeeping.

A marker file next to the output target is locked with `fcntl.flock` for the
lifetime of a session. Its JSON payload records which variants the session is
acquiring, so a later run can decide whether the temp directory left behind by
an interrupted session can be resumed.
"""

import fcntl
import json
import logging
import os
import time
from pathlib import Path
from typing import Any

from dubsync_cli.exceptions import SessionLockedError

log = logging.getLogger(__name__)

MARKER_SUFFIX = ".dubsync-session"
TEMP_DIR_SUFFIX = ".dubsync-tmp"


def marker_path_for(target: Path) -> Path:
    """Returns the session marker path for an output target."""
    target = Path(target)
    return target.parent / f".{target.name}{MARKER_SUFFIX}"


def temp_dir_for(target: Path) -> Path:
    """Returns the session temp directory for an output target."""
    target = Path(target)
    return target.parent / f".{target.name}{TEMP_DIR_SUFFIX}"


class SessionLock:
    """
    Holds the exclusive lock on one output target's session marker.

    Acquisition never blocks: if another process holds the lock,
    `SessionLockedError` is raised immediately.
    """

    def __init__(self, target: Path):
        self.target = Path(target).resolve()
        self.marker_path = marker_path_for(self.target)
        self._fd: int | None = None
        self._previous: dict[str, Any] | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    @property
    def previous_state(self) -> dict[str, Any] | None:
        """The marker payload left behind by an earlier, interrupted session."""
        return self._previous

    def acquire(self, variant_ids: list[str]) -> None:
        """
        Locks the marker file and records this session's variants in it.

        Raises:
            SessionLockedError: Another process holds the session.
        """
        if self.held:
            return
        self.marker_path.parent.mkdir(parents=True, exist_ok=True)
        while True:
            fd = os.open(self.marker_path, os.O_RDWR | os.O_CREAT, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except (BlockingIOError, OSError) as e:
                os.close(fd)
                owner = self._read_owner()
                raise SessionLockedError(
                    f"Output '{self.target}' is already being processed"
                    f"{f' by pid {owner}' if owner else ''}."
                ) from e
            if self._is_current_marker(fd):
                break
            # The previous holder removed the marker after we opened it.
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

        self._fd = fd
        self._previous = self._read_payload()
        self._write_payload(
            {
                "target": str(self.target),
                "variants": sorted(variant_ids),
                "pid": os.getpid(),
                "timestamp": int(time.time()),
            }
        )
        log.debug(f"Acquired session lock on {self.marker_path}")

    def release(self, remove_marker: bool = True) -> None:
        """Unlocks the marker, optionally deleting it."""
        if self._fd is None:
            return
        try:
            if remove_marker:
                self.marker_path.unlink(missing_ok=True)
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        log.debug(f"Released session lock on {self.marker_path}")

    def _is_current_marker(self, fd: int) -> bool:
        try:
            on_disk = os.stat(self.marker_path)
        except FileNotFoundError:
            return False
        locked = os.fstat(fd)
        return (locked.st_dev, locked.st_ino) == (on_disk.st_dev, on_disk.st_ino)

    def _read_payload(self) -> dict[str, Any] | None:
        try:
            raw = self.marker_path.read_text(encoding="utf-8")
        except OSError:
            return None
        if not raw.strip():
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            log.debug(f"Ignoring unreadable session marker {self.marker_path}")
            return None
        return payload if isinstance(payload, dict) else None

    def _read_owner(self) -> int | None:
        payload = self._read_payload()
        if payload and isinstance(payload.get("pid"), int):
            return payload["pid"]
        return None

    def _write_payload(self, payload: dict[str, Any]) -> None:
        data = json.dumps(payload, indent=2).encode("utf-8")
        os.ftruncate(self._fd, 0)
        os.lseek(self._fd, 0, os.SEEK_SET)
        os.write(self._fd, data)
        os.fsync(self._fd)

