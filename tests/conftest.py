"""
Shared pytest fixtures for walg-runner tests.

This module provides fixtures for:
- Flask app and CLI test runner
- Database setup with in-memory SQLite
- Runner settings pointing at a temporary state directory
- A fake wal-g client that simulates the remote backup store
- Mock notifier
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from walg_runner import create_app, db as _db
from walg_runner.config import RunnerSettings
from walg_runner.backup.walg import ToolResult
from walg_runner.notifier import TelegramNotifier


class FakeWalgClient:
    """
    In-memory stand-in for WalgClient.

    Keeps an ordered list of backup listing lines and applies the delete
    primitives to it. Scripted results can be queued per primitive to
    simulate failures; every call is recorded in ``calls``.
    """

    def __init__(self, backups=None, available=True):
        self.backups = list(backups or [])
        self.available = available
        self.calls = []
        self.scripted = {}

    def script(self, primitive, *results):
        """Queue (returncode, output) pairs for a primitive."""
        self.scripted.setdefault(primitive, []).extend(results)

    def calls_to(self, primitive):
        return [args for name, args in self.calls if name == primitive]

    def is_available(self):
        return self.available

    def backup_list(self):
        self.calls.append(('backup_list', ()))
        scripted = self._next('backup_list')
        if scripted:
            return scripted
        if not self.backups:
            return ToolResult(['wal-g', 'backup-list'], 0, 'No backups found\n')
        lines = ['name modified wal_segment_backup_start'] + self.backups
        return ToolResult(['wal-g', 'backup-list'], 0, '\n'.join(lines) + '\n')

    def backup_push(self, pgdata, force_full=False, log_path=None):
        self.calls.append(('backup_push', (pgdata, force_full)))
        result = self._next('backup_push', log_path)
        if result:
            return result
        output = 'INFO: Doing full backup.\nINFO: Wrote backup with name base_new\n'
        return self._result(['backup-push', pgdata], 0, output, log_path)

    def delete_before(self, backup_name, log_path=None):
        self.calls.append(('delete_before', (backup_name,)))
        result = self._next('delete_before', log_path)
        if result:
            return result
        names = [line.split()[0] for line in self.backups]
        index = names.index(backup_name)
        self.backups = self.backups[index:]
        return self._result(['delete', 'before', backup_name], 0, f'deleted {index} backups\n', log_path)

    def delete_retain_full(self, count, log_path=None):
        self.calls.append(('delete_retain_full', (count,)))
        result = self._next('delete_retain_full', log_path)
        if result:
            return result
        full_indexes = [i for i, line in enumerate(self.backups) if 'DELTA' not in line.split()]
        if len(full_indexes) > count:
            first_kept = full_indexes[-count]
            self.backups = self.backups[first_kept:]
        return self._result(['delete', 'retain', 'FULL', str(count)], 0, 'retain done\n', log_path)

    def _next(self, primitive, log_path=None):
        queue = self.scripted.get(primitive)
        if not queue:
            return None
        returncode, output = queue.pop(0)
        return self._result([primitive], returncode, output, log_path)

    @staticmethod
    def _result(args, returncode, output, log_path):
        if log_path:
            with open(log_path, 'a') as f:
                f.write(output)
        return ToolResult(['wal-g'] + list(args), returncode, output)


def daily_backups(first_day, count, month='202401'):
    """Listing lines base_<month><day>T000000Z for consecutive days."""
    return [f"base_{month}{day:02d}T000000Z  FULL" for day in range(first_day, first_day + count)]


@pytest.fixture(scope='function')
def state_dir(tmp_path):
    """Temporary state directory (locks, logs, status files)."""
    path = tmp_path / 'state'
    path.mkdir()
    return path


@pytest.fixture(scope='function')
def app(state_dir):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    app = create_app('testing', test_config={
        'PGDATA': str(state_dir / 'pgdata'),
        'WALG_STATE_DIR': str(state_dir),
        'WALG_FILE_PREFIX': str(state_dir / 'remote'),
        'WALG_RETENTION_FULL': '7',
        'WALG_RETENTION_DAYS': None,
        'TELEGRAM_BOT_TOKEN': None,
        'TELEGRAM_CHAT_ID': None,
    })
    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def settings(state_dir):
    """RunnerSettings pointing at the temporary state directory."""
    return RunnerSettings(
        pgdata=str(state_dir / 'pgdata'),
        storage_prefix_key='WALG_FILE_PREFIX',
        storage_prefix=str(state_dir / 'remote'),
        retention_full=7,
        retention_days=None,
        state_dir=str(state_dir),
    )


@pytest.fixture
def fake_walg():
    """Fake wal-g client with an empty remote store."""
    return FakeWalgClient()


@pytest.fixture
def mock_notifier():
    """Notifier double recording sent messages."""
    return MagicMock(spec=TelegramNotifier)


@pytest.fixture
def fake_walg_binary(tmp_path):
    """
    Create an executable shell script standing in for the wal-g binary.

    It echoes its arguments and the delta setting it sees, and exits with
    $FAKE_WALG_EXIT (default 0).
    """
    script = tmp_path / 'bin' / 'wal-g'
    script.parent.mkdir()
    script.write_text(
        '#!/bin/sh\n'
        'echo "args: $*"\n'
        'echo "delta steps: ${WALG_DELTA_MAX_STEPS:-unset}"\n'
        'echo "prefix: ${WALG_FILE_PREFIX:-unset}"\n'
        'exit "${FAKE_WALG_EXIT:-0}"\n'
    )
    script.chmod(0o755)
    return Path(script)
