"""
Retention policy decisions for base backups.

Pure logic: given the backup listing (oldest first), an optional maximum age
and a minimum number of full backups to keep, work out which backups may be
deleted. Nothing here touches the remote store.

Policy:
1. Age pass: walking in listing order, a backup is "old" when its timestamp
   is strictly before ``now - max_age_days``. Everything before the first
   backup that is not old is a candidate. If every backup is old, the newest
   one is kept anyway.
2. Count pass: the newest ``min_keep_count`` FULL backups and the deltas
   listed after them are protected. With no more full backups than that,
   nothing is deleted.
3. A backup survives if either pass keeps it. wal-g can only delete
   "everything before X", so the deletion set is trimmed to the leading run
   of the listing that both passes agree to drop; X is the first survivor.

Backups whose timestamp cannot be determined are never old.
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

logger = logging.getLogger(__name__)

KIND_FULL = 'FULL'
KIND_DELTA = 'DELTA'

# base_20240920T073000Z -> 20240920T073000
NAME_TIMESTAMP_RE = re.compile(r'(\d{8}T\d{6})Z?')
SIZE_RE = re.compile(r'^\d+(\.\d+)?([KMGTP]i?B?|B)$', re.IGNORECASE)


@dataclass
class BackupRecord:
    """One base backup as reported by backup-list."""
    name: str
    created_at: Optional[datetime] = None
    kind: str = KIND_FULL
    size: Optional[str] = None

    @property
    def is_full(self) -> bool:
        return self.kind == KIND_FULL


@dataclass
class RetentionDecision:
    """Outcome of one retention evaluation."""
    to_delete: List[BackupRecord] = field(default_factory=list)
    boundary_backup: Optional[BackupRecord] = None
    keep_count: int = 0
    cutoff: Optional[datetime] = None
    all_old: bool = False
    unparseable: List[BackupRecord] = field(default_factory=list)
    deletion_safe: bool = True

    @property
    def has_deletions(self) -> bool:
        return bool(self.to_delete)

    @property
    def deleted_names(self) -> List[str]:
        return [backup.name for backup in self.to_delete]


def parse_timestamp(value: str) -> Optional[datetime]:
    """
    Parse a backup timestamp.

    Accepts the compact form embedded in backup names (``YYYYMMDDTHHMMSS``,
    optional trailing ``Z``) and ISO-8601 strings. Naive values are UTC.

    Returns:
        Aware datetime, or None if the value is not a timestamp
    """
    if not value:
        return None

    match = NAME_TIMESTAMP_RE.search(value)
    if match:
        try:
            return datetime.strptime(match.group(1), '%Y%m%dT%H%M%S').replace(tzinfo=timezone.utc)
        except ValueError:
            return None

    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_backup_line(line: str) -> Optional[BackupRecord]:
    """
    Parse one line of backup-list output.

    The first whitespace-delimited field is the backup name. The creation
    time comes from the name; failing that, from the second field
    (wal-g's modification time column).
    """
    fields = line.split()
    if not fields:
        return None

    name = fields[0]
    created_at = None
    if NAME_TIMESTAMP_RE.search(name):
        created_at = parse_timestamp(name)
    elif len(fields) > 1:
        created_at = parse_timestamp(fields[1])

    upper_fields = [f.upper() for f in fields[1:]]
    if '_D_' in name or KIND_DELTA in upper_fields:
        kind = KIND_DELTA
    else:
        kind = KIND_FULL

    size = None
    for value in fields[2:]:
        if SIZE_RE.match(value):
            size = value
            break

    return BackupRecord(name=name, created_at=created_at, kind=kind, size=size)


def parse_backup_list(output: str) -> List[BackupRecord]:
    """
    Parse backup-list output into records, preserving listing order.

    Blank lines, the ``name ...`` header and informational lines that do not
    start with a backup-like name are skipped.
    """
    backups = []
    for raw_line in (output or '').splitlines():
        line = raw_line.strip()
        if not line or line.lower().startswith('name'):
            continue
        if line.startswith('[') or ':' in line.split()[0]:
            # Log chatter such as "INFO: ..." or "[2024-...] message"
            continue
        if line.lower().startswith('no backups'):
            continue

        record = parse_backup_line(line)
        if record:
            backups.append(record)
    return backups


class RetentionPolicy:
    """
    Dual age/count retention policy.
    """

    def __init__(self, max_age_days: Optional[int] = None, min_keep_count: int = 0):
        """
        Initialize retention policy.

        Args:
            max_age_days: Maximum backup age in days (None disables the age pass)
            min_keep_count: Number of newest full backups always kept
        """
        self.max_age_days = max_age_days
        self.min_keep_count = max(min_keep_count or 0, 0)

    def cutoff(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if self.max_age_days is None:
            return None
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now - timedelta(days=self.max_age_days)

    def age_candidates(self, backups: List[BackupRecord], cutoff: datetime,
                       decision: RetentionDecision) -> List[BackupRecord]:
        """Backups the age pass alone would delete."""
        boundary_index = None
        for index, backup in enumerate(backups):
            if backup.created_at is None:
                logger.warning(f"Could not parse timestamp from backup: {backup.name}")
                decision.unparseable.append(backup)
                # Never old
                if boundary_index is None:
                    boundary_index = index
                continue
            if backup.created_at < cutoff:
                continue
            if boundary_index is None:
                boundary_index = index

        if boundary_index is None:
            # Everything is old: keep the newest one
            decision.all_old = bool(backups)
            return list(backups[:-1])
        return list(backups[:boundary_index])

    def protected(self, backups: List[BackupRecord]) -> List[BackupRecord]:
        """
        Backups kept by the count rule.

        The newest min_keep_count full backups are kept together with every
        backup listed after the oldest of them (their delta chains). With no
        more than min_keep_count full backups, everything is kept.
        """
        if self.min_keep_count <= 0:
            return []
        full_indexes = [index for index, backup in enumerate(backups) if backup.is_full]
        if len(full_indexes) <= self.min_keep_count:
            return list(backups)
        return list(backups[full_indexes[-self.min_keep_count]:])

    def decide(self, backups: List[BackupRecord], now: Optional[datetime] = None) -> RetentionDecision:
        """
        Compute which backups to delete.

        Args:
            backups: Backup listing in creation order (oldest first)
            now: Reference time (default: current UTC time)

        Returns:
            RetentionDecision
        """
        decision = RetentionDecision(keep_count=self.min_keep_count)

        if self.max_age_days is None:
            return decision

        decision.cutoff = self.cutoff(now)
        if not backups:
            return decision

        candidates = self.age_candidates(backups, decision.cutoff, decision)

        protected_names = {backup.name for backup in self.protected(backups)}
        candidate_names = {backup.name for backup in candidates} - protected_names

        # Only a leading run can be removed with "delete before"
        to_delete = []
        for backup in backups:
            if backup.name not in candidate_names:
                break
            to_delete.append(backup)

        decision.to_delete = to_delete
        if len(to_delete) < len(backups):
            decision.boundary_backup = backups[len(to_delete)]
        decision.deletion_safe = len(to_delete) < len(backups)

        return decision
