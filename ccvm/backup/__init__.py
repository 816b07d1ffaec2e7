"""
Backup, verification and restore of the ccvm configuration.

Snapshots the Claude settings directory, provider profiles and tool state
under the configuration lock, with checksums to detect tampering or
partial writes.
"""

from ccvm.backup.integrity import digest_tree, hash_tree
from ccvm.backup.manager import (
    BackupCreateError,
    BackupError,
    BackupManager,
    BackupNotFoundError,
    BackupRestoreError,
    IntegrityCheckError,
)
from ccvm.backup.models import (
    BackupEntry,
    BackupKind,
    BackupMetadata,
    MetadataCorruptedError,
    RestoreResult,
    VerificationReport,
)

__all__ = [
    "BackupCreateError",
    "BackupEntry",
    "BackupError",
    "BackupKind",
    "BackupManager",
    "BackupMetadata",
    "BackupNotFoundError",
    "BackupRestoreError",
    "IntegrityCheckError",
    "MetadataCorruptedError",
    "RestoreResult",
    "VerificationReport",
    "digest_tree",
    "hash_tree",
]
