"""Single-instance guard backed by an OS advisory lock.

The lock file is held with ``filelock`` (``flock`` on POSIX, ``msvcrt``
locking on Windows) for the life of the pilot. The OS drops the lock when the
holder exits, so a crashed pilot never leaves a lock that needs reclaiming.
A sibling PID file records the holder for error messages only; it plays no
part in deciding who owns the lock.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from filelock import FileLock, Timeout

from smart_pilot.middleware.error_handler import AlreadyRunningError

logger = logging.getLogger(__name__)


class InstanceLock:
    """Advisory lock ensuring one pilot per home directory."""

    def __init__(self, path: Path, pid_path: Path | None = None) -> None:
        self._path = path
        self._pid_path = pid_path or path.with_suffix(".pid")
        self._pid = os.getpid()
        self._lock = FileLock(str(path))
        self._owned = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def owned(self) -> bool:
        return self._owned

    def acquire(self) -> None:
        """Take the lock without waiting or raise ``AlreadyRunningError``."""
        if self._owned:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._lock.acquire(timeout=0)
        except Timeout as exc:
            owner = self._read_owner()
            raise AlreadyRunningError(
                f"Pilot already running with PID {owner}" if owner else None,
                pid=owner,
            ) from exc

        self._owned = True
        self._pid_path.write_text(str(self._pid), encoding="utf-8")
        logger.debug("Acquired pilot lock %s", self._path)

    def release(self) -> None:
        """Drop the lock; the PID file goes only if it still names this process."""
        if not self._owned:
            return
        self._owned = False
        if self._read_owner() == self._pid:
            self._pid_path.unlink(missing_ok=True)
        self._lock.release()
        logger.debug("Released pilot lock %s", self._path)

    def _read_owner(self) -> int | None:
        try:
            return int(self._pid_path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def __enter__(self) -> InstanceLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
