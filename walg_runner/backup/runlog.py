"""
Per-run log files and status fact files.

Log files are named ``<operation>_<YYYYmmdd_HHMMSS>.log`` inside the log
directory; ``latest.log`` is a symlink to the most recent one. Status files
are small text files overwritten after every run:

    2024-01-11T02:00:13+00:00 OK TYPE=DELTA
    Duration=13s
    LogFile=/var/lib/postgresql/data/walg_logs/backup_20240111_020000.log

They are written for external monitoring only.
"""

import os
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

LATEST_LINK = 'latest.log'


def new_log_path(log_dir, operation: str, now: Optional[datetime] = None) -> Path:
    """
    Build a fresh timestamped log file path.

    Args:
        log_dir: Log directory (created if missing)
        operation: 'backup' or 'cleanup'
        now: Timestamp to use (default: current time)
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    now = now or datetime.now()
    return log_dir / f"{operation}_{now.strftime('%Y%m%d_%H%M%S')}.log"


def retry_log_path(log_path) -> Path:
    """backup_X.log -> backup_X_full_retry.log"""
    log_path = Path(log_path)
    return log_path.with_name(f"{log_path.stem}_full_retry{log_path.suffix}")


def point_latest(log_path) -> Path:
    """
    Point ``latest.log`` in the log's directory at log_path.

    The link is replaced atomically. Failures are logged, not raised.
    """
    log_path = Path(log_path)
    link = log_path.parent / LATEST_LINK
    tmp_link = log_path.parent / f".{LATEST_LINK}.tmp"
    try:
        if tmp_link.is_symlink() or tmp_link.exists():
            tmp_link.unlink()
        os.symlink(log_path.name, tmp_link)
        os.replace(tmp_link, link)
    except OSError as e:
        logger.warning(f"Failed to update {link}: {e}")
    return link


def write_status_file(path, outcome: str, details: Iterable[str] = (),
                      now: Optional[datetime] = None):
    """
    Overwrite a status fact file.

    Args:
        path: Status file path
        outcome: Outcome token for the first line (e.g. 'OK TYPE=FULL', 'FAILED')
        details: Additional 'Key=value' lines
        now: Timestamp for the first line (default: current UTC time)
    """
    now = now or datetime.now(timezone.utc)
    lines = [f"{now.isoformat(timespec='seconds')} {outcome}"]
    lines.extend(details)

    path = Path(path)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text('\n'.join(lines) + '\n')
        os.replace(tmp_path, path)
    except OSError as e:
        logger.warning(f"Failed to write status file {path}: {e}")


def read_status_file(path) -> Optional[str]:
    """Return the status file contents, or None if it does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    return path.read_text()
