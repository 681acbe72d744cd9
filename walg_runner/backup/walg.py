"""
Thin wrapper around the wal-g command line.

Every call runs the binary synchronously with combined stdout/stderr. Output
is returned to the caller and, when a log path is given, appended to that
file line by line as it is produced. No timeout is applied.
"""

import shutil
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, List, Sequence

logger = logging.getLogger(__name__)


class WalgError(Exception):
    """Raised when the wal-g binary cannot be started."""
    pass


@dataclass
class ToolResult:
    """Outcome of one wal-g invocation."""
    args: List[str]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class WalgClient:
    """
    Runs wal-g primitives for one configured storage destination.
    """

    def __init__(self, settings):
        """
        Initialize wal-g client.

        Args:
            settings: RunnerSettings instance
        """
        self.binary = settings.walg_binary
        self.base_env = dict(settings.tool_env)
        if settings.storage_prefix_key and settings.storage_prefix:
            self.base_env[settings.storage_prefix_key] = settings.storage_prefix

    def is_available(self) -> bool:
        """Check that the wal-g binary can be found."""
        path = self.base_env.get('PATH')
        return shutil.which(self.binary, path=path) is not None

    def backup_list(self) -> ToolResult:
        """List base backups, oldest first."""
        return self._run(['backup-list'])

    def backup_push(self, pgdata: str, force_full: bool = False,
                    log_path: Optional[str] = None) -> ToolResult:
        """
        Push a new base backup of the given data directory.

        Args:
            pgdata: PostgreSQL data directory
            force_full: Disable delta chaining for this push
            log_path: File to append the tool output to
        """
        args = ['backup-push', pgdata]
        env = dict(self.base_env)
        if force_full:
            args.append('--full')
            env.pop('WALG_DELTA_MAX_STEPS', None)
        return self._run(args, log_path=log_path, env=env)

    def delete_before(self, backup_name: str, log_path: Optional[str] = None) -> ToolResult:
        """Delete every backup strictly older than backup_name (and its WAL)."""
        return self._run(['delete', 'before', backup_name, '--confirm'], log_path=log_path)

    def delete_retain_full(self, count: int, log_path: Optional[str] = None) -> ToolResult:
        """Keep only the newest count full backups (and their deltas)."""
        return self._run(['delete', 'retain', 'FULL', str(count), '--confirm'], log_path=log_path)

    def _run(self, args: Sequence[str], log_path: Optional[str] = None,
             env: Optional[dict] = None) -> ToolResult:
        cmd = [self.binary] + list(args)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            log_file = open(log_path, 'a') if log_path else None
        except OSError as e:
            raise WalgError(f"Cannot open log file {log_path}: {e}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=env if env is not None else self.base_env,
                text=True,
                errors='replace'
            )
        except OSError as e:
            if log_file:
                log_file.close()
            raise WalgError(f"Failed to run {self.binary}: {e}")

        lines = []
        try:
            for line in process.stdout:
                lines.append(line)
                if log_file:
                    log_file.write(line)
                    log_file.flush()
                logger.debug(line.rstrip())
            returncode = process.wait()
        finally:
            process.stdout.close()
            if log_file:
                log_file.close()

        return ToolResult(args=cmd, returncode=returncode, output=''.join(lines))
