"""
Runner - entry point for backup, clean and combo runs.

Each invocation is a short-lived process:

    validate environment -> take the operation's lock -> run executor
    -> record outcome -> release lock

``combo`` runs a backup and, only if it succeeded, a cleanup. Exceptions
from the components are turned into exit codes here and nowhere else.
"""

import logging
from datetime import datetime
from enum import IntEnum
from typing import List, Optional

from flask import has_app_context
from sqlalchemy.exc import SQLAlchemyError

from walg_runner import db
from walg_runner.config import ConfigError, RunnerSettings, STORAGE_PREFIX_KEYS
from walg_runner.locks import LockManager, LockBusyError, BASEBACKUP_LOCK, CLEANUP_LOCK
from walg_runner.models import RunHistory
from walg_runner.notifier import TelegramNotifier
from walg_runner.backup import (
    WalgClient, BackupExecutor, BackupFailure, CleanupExecutor, CleanupFailure
)

logger = logging.getLogger(__name__)

MODES = ('backup', 'clean', 'combo')


class ExitCode(IntEnum):
    SUCCESS = 0
    FAILURE = 1
    ENV_INVALID = 2
    BUSY = 3


class Runner:
    """
    Sequences locks, executors, run history and notifications.
    """

    def __init__(self, settings: RunnerSettings, client: Optional[WalgClient] = None,
                 notifier: Optional[TelegramNotifier] = None,
                 lock_manager: Optional[LockManager] = None):
        """
        Initialize runner.

        Args:
            settings: RunnerSettings instance
            client: wal-g client shared by both executors
            notifier: Failure notifier
            lock_manager: Lock manager (default: settings.lock_dir)
        """
        self.settings = settings
        self.client = client or WalgClient(settings)
        self.notifier = notifier or TelegramNotifier.from_settings(settings)
        self.locks = lock_manager or LockManager(settings.lock_dir)

    def validate(self) -> List[str]:
        """
        Check that a run can start.

        Returns:
            List of problems (empty if the environment is valid)
        """
        problems = []
        if not self.settings.storage_prefix:
            problems.append(f"{STORAGE_PREFIX_KEYS[0]} is required")
        if not self.client.is_available():
            problems.append(f"{self.settings.walg_binary} binary not found")
        return problems

    def run(self, mode: str) -> ExitCode:
        """
        Run one mode.

        Args:
            mode: 'backup', 'clean' or 'combo'

        Returns:
            ExitCode
        """
        logger.info(f"walg-runner starting (mode: {mode})")

        if mode not in MODES:
            logger.error(f"Unknown mode '{mode}'. Use: backup, clean, or combo")
            return ExitCode.ENV_INVALID

        logger.info("Validating wal-g environment...")
        problems = self.validate()
        if problems:
            for problem in problems:
                logger.error(problem)
                self.notifier.send(f"ERROR: {problem}")
            return ExitCode.ENV_INVALID
        logger.info("Environment validation passed")

        if mode == 'backup':
            return self.run_backup()
        if mode == 'clean':
            return self.run_cleanup()
        return self.run_combo()

    def run_combo(self) -> ExitCode:
        code = self.run_backup()
        if code != ExitCode.SUCCESS:
            logger.warning(f"Backup did not succeed ({code.name}), skipping cleanup")
            return code

        logger.info("Backup successful, proceeding with cleanup")
        return self.run_cleanup()

    def run_backup(self) -> ExitCode:
        lock = self._acquire(BASEBACKUP_LOCK, 'backup')
        if isinstance(lock, ExitCode):
            return lock

        with lock:
            record = self._start_history('backup')
            executor = BackupExecutor(self.settings, client=self.client, notifier=self.notifier)
            try:
                result = executor.execute()
            except BackupFailure as e:
                self._finish_history(
                    record, 'failed',
                    log_path=e.log_path,
                    duration_seconds=e.duration_seconds,
                    error_message=str(e),
                    logs=executor.logs
                )
                return ExitCode.FAILURE

            self._finish_history(
                record, 'success',
                backup_type=result.backup_type.value,
                log_path=result.log_path,
                duration_seconds=result.duration_seconds,
                logs=executor.logs
            )
            return ExitCode.SUCCESS

    def run_cleanup(self) -> ExitCode:
        lock = self._acquire(CLEANUP_LOCK, 'cleanup')
        if isinstance(lock, ExitCode):
            return lock

        with lock:
            record = self._start_history('cleanup')
            started = datetime.utcnow()
            executor = CleanupExecutor(self.settings, client=self.client, notifier=self.notifier)
            try:
                result = executor.execute()
            except CleanupFailure as e:
                self._finish_history(
                    record, 'failed',
                    log_path=e.log_path,
                    deleted_count=e.result.deleted_count if e.result else None,
                    duration_seconds=_seconds_since(started),
                    error_message=str(e),
                    logs=executor.logs
                )
                return ExitCode.FAILURE

            self._finish_history(
                record, 'success',
                log_path=result.log_path,
                deleted_count=result.deleted_count,
                duration_seconds=_seconds_since(started),
                logs=executor.logs
            )
            return ExitCode.SUCCESS

    def _acquire(self, lock_name: str, operation: str):
        """Acquire a lock, or return the ExitCode to finish with."""
        try:
            return self.locks.acquire(lock_name)
        except LockBusyError as e:
            logger.info(f"{e}, skipping")
            record = self._start_history(operation)
            self._finish_history(record, 'skipped', error_message=str(e))
            return ExitCode.BUSY
        except OSError as e:
            message = f"Cannot create lock {lock_name}: {e}"
            logger.error(message)
            self.notifier.send(f"ERROR: {message}")
            return ExitCode.ENV_INVALID

    def _start_history(self, operation: str) -> Optional[RunHistory]:
        if not has_app_context():
            return None
        try:
            record = RunHistory(operation=operation, status='running', started_at=datetime.utcnow())
            db.session.add(record)
            db.session.commit()
            return record
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Failed to record run history: {e}")
            return None

    def _finish_history(self, record: Optional[RunHistory], status: str, logs=None, **fields):
        if record is None:
            return
        try:
            record.status = status
            record.completed_at = datetime.utcnow()
            for name, value in fields.items():
                setattr(record, name, value)
            if logs is not None:
                record.logs = '\n'.join(logs)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Failed to record run history: {e}")


def _seconds_since(started: datetime) -> int:
    return max(int((datetime.utcnow() - started).total_seconds()), 0)


def run_mode(app, mode: str, client: Optional[WalgClient] = None) -> ExitCode:
    """
    Build settings from the app config and run one mode.

    Args:
        app: Flask app (configuration, run history database)
        mode: 'backup', 'clean' or 'combo'
        client: Optional wal-g client override

    Returns:
        ExitCode
    """
    with app.app_context():
        try:
            settings = RunnerSettings.from_config(app.config)
        except ConfigError as e:
            logger.error(f"Invalid configuration: {e}")
            TelegramNotifier(
                bot_token=app.config.get('TELEGRAM_BOT_TOKEN'),
                chat_id=app.config.get('TELEGRAM_CHAT_ID'),
                prefix=app.config.get('TELEGRAM_MESSAGE_PREFIX') or 'WAL-G',
                api_url=app.config.get('TELEGRAM_API_URL') or 'https://api.telegram.org'
            ).send(f"ERROR: Invalid configuration: {e}")
            return ExitCode.ENV_INVALID

        return Runner(settings, client=client).run(mode)
