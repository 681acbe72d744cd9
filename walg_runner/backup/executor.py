"""
Backup executor - drives one wal-g base backup.

Workflow:
1. Open a timestamped log file for the run
2. Run backup-push (delta chaining unless a full backup is forced)
3. On a database identity mismatch, retry once as a full backup
4. Classify the backup type from the tool output
5. Point latest.log at the run's log and write the status file
6. Notify on terminal failure
"""

import time
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from walg_runner.notifier import TelegramNotifier
from .classify import BackupType, classify_backup_output, is_identity_mismatch
from .runlog import new_log_path, retry_log_path, point_latest, write_status_file
from .walg import WalgClient, WalgError, ToolResult

logger = logging.getLogger(__name__)


class BackupFailure(Exception):
    """Raised when a base backup could not be taken."""

    def __init__(self, message: str, log_path: Optional[str] = None, duration_seconds: int = 0):
        super().__init__(message)
        self.log_path = log_path
        self.duration_seconds = duration_seconds


@dataclass
class BackupResult:
    """Outcome of a successful backup run."""
    backup_type: BackupType
    duration_seconds: int
    log_path: str
    attempts: int = 1


class BackupExecutor:
    """
    Runs a base backup and interprets the result.
    """

    def __init__(self, settings, client: Optional[WalgClient] = None,
                 notifier: Optional[TelegramNotifier] = None):
        """
        Initialize backup executor.

        Args:
            settings: RunnerSettings instance
            client: wal-g client (default: built from settings)
            notifier: Failure notifier (default: built from settings)
        """
        self.settings = settings
        self.client = client or WalgClient(settings)
        self.notifier = notifier or TelegramNotifier.from_settings(settings)
        self.log_path = None
        self.logs = []
        self._started = None

    def execute(self, force_full: Optional[bool] = None) -> BackupResult:
        """
        Execute the backup.

        Args:
            force_full: Force a full backup (default: settings.force_full)

        Returns:
            BackupResult

        Raises:
            BackupFailure: If the backup (and any retry) failed
        """
        if force_full is None:
            force_full = self.settings.force_full

        self._started = time.monotonic()
        try:
            self.log_path = str(new_log_path(self.settings.log_dir, 'backup'))
        except OSError as e:
            self._log(f"Cannot create log file in {self.settings.log_dir}: {e}", logging.ERROR)
            self._fail(f"Base backup could not start: cannot create log file: {e}", None)

        self._log(f"Starting wal-g base backup of {self.settings.pgdata}")
        self._log(f"Log file: {self.log_path}")

        if force_full:
            self._log("Forcing full backup (FORCE_FULL=1)")

        result = self._push(force_full, self.log_path)

        if result.ok:
            backup_type = classify_backup_output(result.output)
            if backup_type is BackupType.UNKNOWN:
                self._log("Backup type could not be determined from wal-g output", logging.WARNING)
            return self._succeed(backup_type, self.log_path, attempts=1)

        if is_identity_mismatch(result.output):
            self._log("Detected system identifier mismatch during delta backup; retrying as full backup", logging.WARNING)
            retry_path = str(retry_log_path(self.log_path))
            retry = self._push(True, retry_path)

            if retry.ok:
                self._log("Full backup retry succeeded")
                return self._succeed(BackupType.FULL_RETRY, retry_path, attempts=2)

            self._log(f"Full backup retry failed (exit code {retry.returncode})", logging.ERROR)
            self._fail("Full backup retry failed after delta mismatch.", retry_path)

        self._log(f"Backup failed (exit code {result.returncode})", logging.ERROR)
        self._fail("Base backup failed. Check logs.", self.log_path)

    def _push(self, force_full: bool, log_path: str) -> ToolResult:
        try:
            return self.client.backup_push(self.settings.pgdata, force_full=force_full, log_path=log_path)
        except WalgError as e:
            self._log(str(e), logging.ERROR)
            self._fail(f"Base backup could not start: {e}", log_path)

    def _succeed(self, backup_type: BackupType, log_path: str, attempts: int) -> BackupResult:
        duration = self._elapsed()
        self._log(f"Backup completed successfully (Type: {backup_type.value}, Duration: {duration}s)")

        point_latest(log_path)
        write_status_file(
            self.settings.backup_status_file,
            f"OK TYPE={backup_type.value}",
            [f"Duration={duration}s", f"LogFile={log_path}"]
        )

        return BackupResult(
            backup_type=backup_type,
            duration_seconds=duration,
            log_path=log_path,
            attempts=attempts
        )

    def _fail(self, message: str, log_path: Optional[str]):
        duration = self._elapsed()

        details = [f"Duration={duration}s"]
        if log_path:
            point_latest(log_path)
            details.append(f"LogFile={log_path}")
        write_status_file(self.settings.backup_status_file, "FAILED", details)

        self.notifier.send(f"ERROR: {message}")
        raise BackupFailure(message, log_path=log_path, duration_seconds=duration)

    def _elapsed(self) -> int:
        if self._started is None:
            return 0
        return int(time.monotonic() - self._started)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
