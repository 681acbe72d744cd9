"""
Unit tests for advisory file locks (walg_runner/locks.py).
"""

import os
import subprocess
import sys

import pytest

from walg_runner.locks import LockManager, LockBusyError, BASEBACKUP_LOCK, CLEANUP_LOCK


class TestLockManager:
    """Test LockManager acquire/release behaviour."""

    def test_acquire_creates_lock_file(self, tmp_path):
        manager = LockManager(tmp_path / 'locks')

        with manager.acquire(BASEBACKUP_LOCK) as lock:
            assert lock.held
            assert manager.path_for(BASEBACKUP_LOCK).exists()
            assert manager.path_for(BASEBACKUP_LOCK).read_text().strip() == str(os.getpid())

        assert not lock.held
        # The file stays behind; only the flock is dropped
        assert manager.path_for(BASEBACKUP_LOCK).exists()

    def test_second_acquire_is_busy(self, tmp_path):
        manager = LockManager(tmp_path)
        first = manager.acquire(BASEBACKUP_LOCK)

        with pytest.raises(LockBusyError) as exc_info:
            manager.acquire(BASEBACKUP_LOCK)

        assert exc_info.value.name == BASEBACKUP_LOCK
        first.release()

    def test_acquire_after_release(self, tmp_path):
        manager = LockManager(tmp_path)

        first = manager.acquire(CLEANUP_LOCK)
        first.release()
        second = manager.acquire(CLEANUP_LOCK)

        assert second.held
        second.release()

    def test_different_names_are_independent(self, tmp_path):
        manager = LockManager(tmp_path)

        with manager.acquire(BASEBACKUP_LOCK), manager.acquire(CLEANUP_LOCK) as cleanup:
            assert cleanup.held

    def test_release_is_idempotent(self, tmp_path):
        lock = LockManager(tmp_path).acquire(BASEBACKUP_LOCK)

        lock.release()
        lock.release()

        assert not lock.held

    def test_busy_does_not_modify_lock_file(self, tmp_path):
        manager = LockManager(tmp_path)
        with manager.acquire(BASEBACKUP_LOCK):
            before = manager.path_for(BASEBACKUP_LOCK).read_text()
            with pytest.raises(LockBusyError):
                manager.acquire(BASEBACKUP_LOCK)
            assert manager.path_for(BASEBACKUP_LOCK).read_text() == before

    def test_released_when_exception_raised(self, tmp_path):
        manager = LockManager(tmp_path)

        with pytest.raises(RuntimeError):
            with manager.acquire(BASEBACKUP_LOCK):
                raise RuntimeError("boom")

        with manager.acquire(BASEBACKUP_LOCK) as lock:
            assert lock.held

    def test_lock_held_by_other_process(self, tmp_path):
        """A lock held by another process is busy until that process exits."""
        lock_path = tmp_path / f'{BASEBACKUP_LOCK}.lock'
        holder = subprocess.Popen(
            [sys.executable, '-c',
             'import fcntl, sys, time\n'
             f'f = open({str(lock_path)!r}, "w")\n'
             'fcntl.flock(f, fcntl.LOCK_EX)\n'
             'print("locked", flush=True)\n'
             'sys.stdin.readline()\n'],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            text=True
        )
        try:
            assert holder.stdout.readline().strip() == 'locked'

            manager = LockManager(tmp_path)
            with pytest.raises(LockBusyError):
                manager.acquire(BASEBACKUP_LOCK)
        finally:
            holder.stdin.close()
            holder.wait(timeout=10)

        with manager.acquire(BASEBACKUP_LOCK) as lock:
            assert lock.held
