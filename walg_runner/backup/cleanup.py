"""
Cleanup executor - applies retention to the remote backup store.

Two independent passes, each logged to the same per-run log file:
1. Age pass (only when a maximum age is configured): list backups, ask the
   RetentionPolicy for a boundary and run ``delete before <boundary>``.
2. Count pass (always): ``delete retain FULL <n>``.

Finding nothing to delete is a success. A real failure in one pass is
notified and does not stop the other; the run then ends with
CleanupFailure.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from walg_runner.notifier import TelegramNotifier
from .classify import DeleteOutcome, classify_delete_output, reports_nothing_found
from .retention import BackupRecord, RetentionDecision, RetentionPolicy, parse_backup_list
from .runlog import new_log_path, point_latest, write_status_file
from .walg import WalgClient, WalgError

logger = logging.getLogger(__name__)

AGE_PASS = 'age'
COUNT_PASS = 'count'
SETUP = 'setup'


class CleanupFailure(Exception):
    """Raised when at least one cleanup pass failed."""

    def __init__(self, message: str, log_path: Optional[str] = None, result=None):
        super().__init__(message)
        self.log_path = log_path
        self.result = result


@dataclass
class CleanupResult:
    """Outcome of a cleanup run."""
    deleted_count: int = 0
    log_path: Optional[str] = None
    decision: Optional[RetentionDecision] = None
    outcomes: Dict[str, DeleteOutcome] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def nothing_deleted(self) -> bool:
        return self.deleted_count == 0


class CleanupExecutor:
    """
    Enforces age- and count-based retention through wal-g's delete primitives.
    """

    def __init__(self, settings, client: Optional[WalgClient] = None,
                 notifier: Optional[TelegramNotifier] = None,
                 policy: Optional[RetentionPolicy] = None):
        """
        Initialize cleanup executor.

        Args:
            settings: RunnerSettings instance
            client: wal-g client (default: built from settings)
            notifier: Failure notifier (default: built from settings)
            policy: Retention policy (default: built from settings)
        """
        self.settings = settings
        self.client = client or WalgClient(settings)
        self.notifier = notifier or TelegramNotifier.from_settings(settings)
        self.policy = policy or RetentionPolicy(
            max_age_days=settings.retention_days,
            min_keep_count=settings.retention_full
        )
        self.logs = []

    def execute(self, now: Optional[datetime] = None) -> CleanupResult:
        """
        Execute both retention passes.

        Args:
            now: Reference time for the age pass (default: current time)

        Returns:
            CleanupResult

        Raises:
            CleanupFailure: If a pass failed for a reason other than having
                nothing to delete
        """
        result = CleanupResult()
        try:
            result.log_path = str(new_log_path(self.settings.log_dir, 'cleanup'))
        except OSError as e:
            self._pass_failed(SETUP, f"Cleanup could not start: cannot create log file: {e}", result)
            write_status_file(
                self.settings.cleanup_status_file,
                "CLEANUP_FAILED",
                [f"Errors={len(result.errors)}"]
            )
            raise CleanupFailure(result.errors[0], result=result)

        self._log("Starting wal-g cleanup")

        before = self._list_backups()

        if self.policy.max_age_days is not None:
            self._age_pass(before, now, result)
        else:
            self._log("Time-based retention not configured, skipping age pass")

        self._count_pass(result)

        after = self._list_backups()
        result.deleted_count = self._count_deleted(before, after, result)

        point_latest(result.log_path)

        if result.errors:
            write_status_file(
                self.settings.cleanup_status_file,
                "CLEANUP_FAILED",
                [f"Errors={len(result.errors)}", f"LogFile={result.log_path}"]
            )
            raise CleanupFailure('; '.join(result.errors), log_path=result.log_path, result=result)

        if result.nothing_deleted:
            self._log("Cleanup completed - no backups needed deletion")
            status = "CLEANUP_OK NO_DELETION_NEEDED"
        else:
            self._log(f"Cleanup completed successfully ({result.deleted_count} backups deleted)")
            status = f"CLEANUP_OK RETAIN_FULL={self.policy.min_keep_count}"
            if self.policy.max_age_days is not None:
                status += f" RETAIN_DAYS={self.policy.max_age_days}"

        write_status_file(
            self.settings.cleanup_status_file,
            status,
            [f"Deleted={result.deleted_count}", f"LogFile={result.log_path}"]
        )
        return result

    def _age_pass(self, backups: Optional[List[BackupRecord]], now: Optional[datetime],
                  result: CleanupResult):
        days = self.policy.max_age_days
        self._log(f"Applying time-based retention: deleting backups older than {days} days")

        if backups is None:
            self._pass_failed(AGE_PASS, "Time-based cleanup failed - could not list backups", result)
            return
        if not backups:
            self._log("No backups found for time-based cleanup")
            result.outcomes[AGE_PASS] = DeleteOutcome.BENIGN_EMPTY
            return

        decision = self.policy.decide(backups, now=now)
        result.decision = decision
        self._log(f"Cutoff date: {decision.cutoff.isoformat()}")

        for backup in decision.unparseable:
            self._log(f"Could not parse timestamp from backup: {backup.name}", logging.WARNING)

        if decision.all_old:
            self._log(f"All backups are older than {days} days. Keeping the newest one for safety.",
                      logging.WARNING)

        if not decision.has_deletions:
            self._log(f"No backups older than {days} days can be deleted")
            result.outcomes[AGE_PASS] = DeleteOutcome.BENIGN_EMPTY
            return

        if not decision.deletion_safe or decision.boundary_backup is None:
            # Unreachable with a consistent policy; never delete the last backup
            self._pass_failed(AGE_PASS, "Time-based cleanup refused: it would delete every backup", result)
            return

        boundary = decision.boundary_backup.name
        self._log(f"Deleting {len(decision.to_delete)} backups before: {boundary}")
        for backup in decision.to_delete:
            self._log(f"Old backup: {backup.name}")

        try:
            tool_result = self.client.delete_before(boundary, log_path=result.log_path)
        except WalgError as e:
            self._pass_failed(AGE_PASS, f"Time-based cleanup failed: {e}", result)
            return

        outcome = classify_delete_output(tool_result.returncode, tool_result.output)
        result.outcomes[AGE_PASS] = outcome
        if outcome is DeleteOutcome.REAL_FAILURE:
            self._pass_failed(AGE_PASS, f"Failed to delete backups before {boundary}", result)
        elif outcome is DeleteOutcome.BENIGN_EMPTY:
            self._log("Time-based cleanup found no backups to delete")
        else:
            self._log("Successfully deleted old backups and associated WAL files")

    def _count_pass(self, result: CleanupResult):
        retain = self.policy.min_keep_count
        if retain < 1:
            # retain 0 would remove every full backup
            self._log("WALG_RETENTION_FULL is 0; retaining 1 full backup", logging.WARNING)
            retain = 1

        self._log(f"Retaining {retain} full backups (count-based)")
        try:
            tool_result = self.client.delete_retain_full(retain, log_path=result.log_path)
        except WalgError as e:
            self._pass_failed(COUNT_PASS, f"Count-based cleanup failed: {e}", result)
            return

        outcome = classify_delete_output(tool_result.returncode, tool_result.output)
        result.outcomes[COUNT_PASS] = outcome
        if outcome is DeleteOutcome.REAL_FAILURE:
            self._pass_failed(COUNT_PASS, f"Count-based cleanup failed (retain {retain})", result)
        elif outcome is DeleteOutcome.BENIGN_EMPTY:
            self._log("Count-based cleanup found no backups to delete")
        else:
            self._log("Count-based cleanup completed successfully")

    def _list_backups(self) -> Optional[List[BackupRecord]]:
        """Current backups, oldest first; None if listing failed."""
        try:
            tool_result = self.client.backup_list()
        except WalgError as e:
            self._log(f"Failed to list backups: {e}", logging.WARNING)
            return None

        if tool_result.ok:
            return parse_backup_list(tool_result.output)
        if reports_nothing_found(tool_result.output):
            return []

        self._log(f"Failed to list backups (exit code {tool_result.returncode})", logging.WARNING)
        return None

    @staticmethod
    def _count_deleted(before: Optional[List[BackupRecord]], after: Optional[List[BackupRecord]],
                       result: CleanupResult) -> int:
        if before is not None and after is not None:
            remaining = {backup.name for backup in after}
            return sum(1 for backup in before if backup.name not in remaining)
        if result.decision and result.outcomes.get(AGE_PASS) is DeleteOutcome.DELETED:
            return len(result.decision.to_delete)
        return 0

    def _pass_failed(self, pass_name: str, message: str, result: CleanupResult):
        result.outcomes.setdefault(pass_name, DeleteOutcome.REAL_FAILURE)
        result.errors.append(message)
        self._log(message, logging.ERROR)
        self.notifier.send(f"ERROR: {message}")

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
