"""
Heuristic classification of wal-g output.

wal-g prints free-form log text; these helpers are the only place that looks
for markers in it.
"""

from enum import Enum


class BackupType(str, Enum):
    FULL = 'FULL'
    DELTA = 'DELTA'
    FULL_RETRY = 'FULL_RETRY'
    UNKNOWN = 'UNKNOWN'


class DeleteOutcome(str, Enum):
    DELETED = 'DELETED'
    BENIGN_EMPTY = 'BENIGN_EMPTY'
    REAL_FAILURE = 'REAL_FAILURE'


DELTA_MARKERS = ('delta backup',)
FULL_MARKERS = ('full backup', 'backup completed')

IDENTITY_MISMATCH_MARKER = 'current database and database of base backup are not equal'

NOTHING_TO_DELETE_MARKERS = (
    'no backups found',
    'no backup found',
    'nothing to delete',
    'there are no backups',
)


def classify_backup_output(output: str) -> BackupType:
    """
    Infer the kind of backup a successful push produced.

    Args:
        output: Combined output of backup-push

    Returns:
        BackupType.DELTA, BackupType.FULL or BackupType.UNKNOWN
    """
    text = (output or '').lower()
    if any(marker in text for marker in DELTA_MARKERS):
        return BackupType.DELTA
    if any(marker in text for marker in FULL_MARKERS):
        return BackupType.FULL
    return BackupType.UNKNOWN


def is_identity_mismatch(output: str) -> bool:
    """True if a push failed because the database no longer matches its delta parent."""
    return IDENTITY_MISMATCH_MARKER in (output or '').lower()


def reports_nothing_found(output: str) -> bool:
    text = (output or '').lower()
    return any(marker in text for marker in NOTHING_TO_DELETE_MARKERS)


def classify_delete_output(returncode: int, output: str) -> DeleteOutcome:
    """
    Classify the result of a delete primitive.

    A zero exit is a deletion (possibly of nothing). A non-zero exit whose
    output says there was nothing to delete is benign.
    """
    if returncode == 0:
        return DeleteOutcome.DELETED
    if reports_nothing_found(output):
        return DeleteOutcome.BENIGN_EMPTY
    return DeleteOutcome.REAL_FAILURE
