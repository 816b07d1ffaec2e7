"""
ccvm.lock - Cross-process locking module

Sentinel-file lock used to serialize backup, restore and reset operations
across independent ccvm invocations.
"""

from ccvm.lock.manager import (
    LOCK_FILE_NAME,
    Lock,
    LockError,
    LockManager,
    LockTimeoutError,
    StaleLockError,
)

__all__ = [
    "LOCK_FILE_NAME",
    "Lock",
    "LockError",
    "LockManager",
    "LockTimeoutError",
    "StaleLockError",
]
