"""
Typed settings for the backup and lock subsystems.

Turns the flat dictionary read from settings.yaml into dataclasses with
defaults, so the rest of the code never looks keys up by string.

Settings file format (settings.yaml):

    verbose: false
    log_retention_count: 10
    backup_max_count: 20
    backup_max_days: 90
    backup_auto_clean: true
    lock_timeout: 30
    lock_retry_interval: 0.1
    lock_max_retries: 300
    lock_stale_after: 300
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# Backup retention defaults
DEFAULT_BACKUP_MAX_COUNT = 20
DEFAULT_BACKUP_MAX_DAYS = 90

# Lock defaults (seconds)
DEFAULT_LOCK_TIMEOUT = 30.0
DEFAULT_LOCK_RETRY_INTERVAL = 0.1
DEFAULT_LOCK_MAX_RETRIES = 300
DEFAULT_LOCK_STALE_AFTER = 300.0

DEFAULT_LOG_RETENTION_COUNT = 10


@dataclass
class LockSettings:
    """
    Lock acquisition policy.

    Attributes:
        timeout: Seconds to keep polling before giving up
        retry_interval: Seconds between polls
        max_retries: Maximum number of polls
        stale_after: Age in seconds after which a lock is reclaimed
    """

    timeout: float = DEFAULT_LOCK_TIMEOUT
    retry_interval: float = DEFAULT_LOCK_RETRY_INTERVAL
    max_retries: int = DEFAULT_LOCK_MAX_RETRIES
    stale_after: float = DEFAULT_LOCK_STALE_AFTER

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockSettings:
        return cls(
            timeout=float(data.get("lock_timeout", DEFAULT_LOCK_TIMEOUT)),
            retry_interval=float(
                data.get("lock_retry_interval", DEFAULT_LOCK_RETRY_INTERVAL)
            ),
            max_retries=int(data.get("lock_max_retries", DEFAULT_LOCK_MAX_RETRIES)),
            stale_after=float(data.get("lock_stale_after", DEFAULT_LOCK_STALE_AFTER)),
        )


@dataclass
class BackupSettings:
    """
    Backup retention policy.

    Attributes:
        max_count: Backups kept by automatic cleanup (0 = unlimited)
        max_days: Age limit in days for automatic cleanup (0 = unlimited)
        auto_clean: Whether create_backup() runs cleanup first
    """

    max_count: int = DEFAULT_BACKUP_MAX_COUNT
    max_days: int = DEFAULT_BACKUP_MAX_DAYS
    auto_clean: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupSettings:
        return cls(
            max_count=int(data.get("backup_max_count", DEFAULT_BACKUP_MAX_COUNT)),
            max_days=int(data.get("backup_max_days", DEFAULT_BACKUP_MAX_DAYS)),
            auto_clean=bool(data.get("backup_auto_clean", True)),
        )


@dataclass
class Settings:
    """
    All ccvm settings.

    Usage:
        raw = ConfigLoader(config_dir).load_and_validate()
        settings = Settings.from_dict(raw)
        settings.lock.timeout
    """

    verbose: bool = False
    log_dir: Path | None = None
    log_retention_count: int = DEFAULT_LOG_RETENTION_COUNT
    backup: BackupSettings = field(default_factory=BackupSettings)
    lock: LockSettings = field(default_factory=LockSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Settings:
        """
        Create Settings from a validated settings dictionary.

        Args:
            data: Dictionary from ConfigLoader, or None for defaults

        Returns:
            Settings instance
        """
        if not data:
            return cls()

        log_dir = data.get("log_dir")
        return cls(
            verbose=bool(data.get("verbose", False)),
            log_dir=Path(log_dir).expanduser() if log_dir else None,
            log_retention_count=int(
                data.get("log_retention_count", DEFAULT_LOG_RETENTION_COUNT)
            ),
            backup=BackupSettings.from_dict(data),
            lock=LockSettings.from_dict(data),
        )
