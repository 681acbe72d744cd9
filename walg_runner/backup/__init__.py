"""
Backup module for walg-runner.

This module handles the core backup lifecycle:
- wal-g invocation (backup-push, backup-list, delete)
- Output classification
- Retention policy decisions
- Backup and cleanup execution
"""

from .walg import WalgClient, WalgError, ToolResult
from .classify import BackupType, DeleteOutcome
from .retention import BackupRecord, RetentionDecision, RetentionPolicy, parse_backup_list
from .executor import BackupExecutor, BackupFailure, BackupResult
from .cleanup import CleanupExecutor, CleanupFailure, CleanupResult

__all__ = [
    'WalgClient',
    'WalgError',
    'ToolResult',
    'BackupType',
    'DeleteOutcome',
    'BackupRecord',
    'RetentionDecision',
    'RetentionPolicy',
    'parse_backup_list',
    'BackupExecutor',
    'BackupFailure',
    'BackupResult',
    'CleanupExecutor',
    'CleanupFailure',
    'CleanupResult'
]
