"""
Advisory, non-blocking, per-operation file locks.

Locks are taken with flock(2) on an open file descriptor, so the kernel drops
them as soon as the holding process exits, however it exits. Lock files are
never removed; an unlocked file left on disk is harmless.
"""

import os
import fcntl
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

BASEBACKUP_LOCK = 'basebackup'
CLEANUP_LOCK = 'cleanup'


class LockBusyError(Exception):
    """Raised when another process holds the requested lock."""

    def __init__(self, name: str, path: Path):
        super().__init__(f"Another {name} operation is running (lock: {path})")
        self.name = name
        self.path = path


class FileLock:
    """
    A held lock. Use as a context manager, or call release().
    """

    def __init__(self, name: str, path: Path, fd: int):
        self.name = name
        self.path = path
        self._fd: Optional[int] = fd

    @property
    def held(self) -> bool:
        return self._fd is not None

    def release(self):
        """Release the lock; safe to call more than once."""
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
            logger.debug(f"Released lock {self.name}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def __repr__(self):
        return f'<FileLock {self.name} held={self.held}>'


class LockManager:
    """
    Hands out named advisory locks stored under one directory.

    Each lock name maps to ``<lock_dir>/<name>.lock``.
    """

    def __init__(self, lock_dir):
        self.lock_dir = Path(lock_dir)

    def path_for(self, name: str) -> Path:
        return self.lock_dir / f"{name}.lock"

    def acquire(self, name: str) -> FileLock:
        """
        Acquire a named lock without waiting.

        Args:
            name: Lock name (e.g. 'basebackup', 'cleanup')

        Returns:
            FileLock guard holding the lock

        Raises:
            LockBusyError: If another holder has the lock
        """
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(name)

        fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise LockBusyError(name, path)
        except OSError:
            os.close(fd)
            raise

        # Record the holder for operators inspecting the lock directory
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())

        logger.debug(f"Acquired lock {name} ({path})")
        return FileLock(name, path, fd)
