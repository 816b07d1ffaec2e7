"""
Backup manager for configuration snapshots and recovery.

Provides functionality to:
- Snapshot the watched locations into timestamped backup directories
- Stamp each snapshot with a checksum and a separate integrity record
- List backups, flagging those whose metadata is corrupted
- Verify a snapshot against both records, reporting every discrepancy
- Restore a verified snapshot after taking a pre-restore safety backup
- Apply retention by count and age

Every mutating operation holds the configuration lock so concurrent
ccvm invocations never interleave copies.
"""

from __future__ import annotations

import getpass
import json
import logging
import os
import platform
import shutil
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from ccvm import __version__
from ccvm.backup.integrity import INTEGRITY_FILE, METADATA_FILE, digest_tree
from ccvm.backup.models import (
    BackupContents,
    BackupEntry,
    BackupKind,
    BackupMetadata,
    CleanupResult,
    IntegrityRecord,
    MetadataCorruptedError,
    RestoreResult,
    VerificationReport,
)
from ccvm.config.settings import BackupSettings
from ccvm.lock.manager import LockManager
from ccvm.storage.layout import (
    DIR_MODE,
    ConfigLayout,
    clear_directory,
    ensure_private_dir,
    remove_path,
    write_private_json,
)

logger = logging.getLogger(__name__)

# Backup ids are UTC timestamps; lexical order is creation order
BACKUP_ID_FORMAT = "%Y-%m-%dT%H-%M-%S-%f"

DEFAULT_DESCRIPTION = "Manual backup"


class BackupError(Exception):
    """Base exception for backup-related errors."""

    pass


class BackupNotFoundError(BackupError):
    """Raised when a backup id does not name an existing backup."""

    def __init__(self, backup_id: str):
        self.backup_id = backup_id
        super().__init__(f"Backup not found: {backup_id}")


class BackupCreateError(BackupError):
    """Raised when copying, hashing, or writing a new backup fails."""

    pass


class IntegrityCheckError(BackupError):
    """Raised when a backup fails verification before restore."""

    def __init__(self, report: VerificationReport):
        self.report = report
        issues = "; ".join(report.issues)
        super().__init__(
            f"Backup {report.backup_id} failed integrity check: {issues}"
        )


class BackupRestoreError(BackupError):
    """
    Raised when one or more locations could not be restored.

    The live configuration may be partially restored; the pre-restore
    backup holds the state from before the attempt.
    """

    def __init__(
        self, backup_id: str, pre_restore_id: str, failures: dict[str, str]
    ):
        self.backup_id = backup_id
        self.pre_restore_id = pre_restore_id
        self.failures = failures
        details = "; ".join(f"{name}: {error}" for name, error in failures.items())
        super().__init__(
            f"Restore of {backup_id} incomplete ({details}). "
            f"Previous state saved as backup {pre_restore_id}"
        )


@dataclass(frozen=True)
class WatchedLocation:
    """A live location copied into every backup."""

    name: str
    source: Path
    destination: str


def parse_backup_id(backup_id: str) -> datetime | None:
    """Return the creation time encoded in a backup id, if any."""
    try:
        return datetime.strptime(backup_id[:26], BACKUP_ID_FORMAT).replace(
            tzinfo=timezone.utc
        )
    except ValueError:
        return None


def directory_size(path: Path) -> int:
    """Total size of the files under path (0 if unreadable)."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def _host_info() -> dict[str, str]:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = ""
    return {
        "hostname": socket.gethostname(),
        "platform": platform.system(),
        "python": platform.python_version(),
        "user": user,
    }


class BackupManager:
    """
    Manager for creating, verifying, and restoring configuration backups.

    Attributes:
        layout: Configuration layout (watched paths, backup root, lock file)
        lock_manager: LockManager used for mutual exclusion
        settings: Retention policy applied by create_backup()

    Usage:
        layout = ConfigLayout.resolve()
        bm = BackupManager(layout)

        backup_id = bm.create_backup("before provider edit")
        for entry in bm.list_backups():
            print(entry.id, entry.description)

        report = bm.verify_backup(backup_id)
        if report.valid:
            bm.restore_backup(backup_id)

        bm.clean_old_backups(keep_count=10)
    """

    def __init__(
        self,
        layout: ConfigLayout,
        lock_manager: LockManager | None = None,
        settings: BackupSettings | None = None,
    ):
        """
        Initialize the backup manager.

        Args:
            layout: Paths of the configuration being protected
            lock_manager: Shared LockManager (a default one is created if None)
            settings: Retention policy (defaults if None)
        """
        self.layout = layout
        self.lock_manager = lock_manager or LockManager()
        self.settings = settings or BackupSettings()

    @property
    def backup_dir(self) -> Path:
        return self.layout.backups_dir

    @property
    def lock_path(self) -> Path:
        return self.layout.lock_file

    def watched_locations(self) -> list[WatchedLocation]:
        """Locations copied into each backup, keyed by BackupContents field."""
        return [
            WatchedLocation("claude", self.layout.claude_dir, "claude"),
            WatchedLocation("providers", self.layout.providers_dir, "providers"),
            WatchedLocation("config", self.layout.config_file, "config.json"),
        ]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_backup(
        self,
        description: str = DEFAULT_DESCRIPTION,
        kind: BackupKind | str = BackupKind.MANUAL,
    ) -> str:
        """
        Snapshot the watched locations.

        Holds the lock, applies retention first (manual backups only),
        copies each watched location that exists, then writes the
        metadata record followed by the integrity record.

        Args:
            description: Free-text description stored in the metadata
            kind: Why the backup is taken (manual, pre-restore, pre-reset)

        Returns:
            The new backup id.

        Raises:
            LockTimeoutError: If another operation holds the lock.
            BackupCreateError: If any copy, hash, or write step fails.
        """
        kind = BackupKind(kind)
        with self.lock_manager.hold(self.lock_path, "backup"):
            return self._create_locked(description, kind)

    def _create_locked(self, description: str, kind: BackupKind) -> str:
        try:
            ensure_private_dir(self.backup_dir)
        except OSError as e:
            raise BackupCreateError(
                f"Cannot create backup directory {self.backup_dir}: {e}"
            ) from e

        if kind is BackupKind.MANUAL and self.settings.auto_clean:
            self._auto_clean()

        created = datetime.now(timezone.utc)
        backup_id, backup_path = self._make_backup_dir(created)

        try:
            contents = self._copy_watched(backup_path)
            digest = digest_tree(backup_path)

            metadata = BackupMetadata(
                id=backup_id,
                description=description,
                created=created,
                size_bytes=digest.size_bytes,
                files=digest.file_count,
                checksum=digest.checksum,
                contents=contents,
                kind=kind.value,
                tool_version=__version__,
                host=_host_info(),
            )
            write_private_json(backup_path / METADATA_FILE, metadata.to_dict())

            integrity = IntegrityRecord(
                created=created, checksum=digest.checksum, files=digest.file_count
            )
            write_private_json(backup_path / INTEGRITY_FILE, integrity.to_dict())

        except OSError as e:
            self._discard(backup_path)
            raise BackupCreateError(f"Failed to create backup {backup_id}: {e}") from e

        logger.info(
            f"Created {kind.value} backup {backup_id} "
            f"({digest.file_count} files, {digest.size_bytes} bytes)"
        )
        return backup_id

    def _make_backup_dir(self, created: datetime) -> tuple[str, Path]:
        base_id = created.strftime(BACKUP_ID_FORMAT)
        backup_id = base_id
        suffix = 0

        while True:
            backup_path = self.backup_dir / backup_id
            try:
                backup_path.mkdir(mode=DIR_MODE)
            except FileExistsError:
                suffix += 1
                backup_id = f"{base_id}_{suffix:02d}"
                continue
            except OSError as e:
                raise BackupCreateError(
                    f"Cannot create backup directory {backup_path}: {e}"
                ) from e
            os.chmod(backup_path, DIR_MODE)
            return backup_id, backup_path

    def _copy_watched(self, backup_path: Path) -> BackupContents:
        contents = BackupContents()

        for location in self.watched_locations():
            source = location.source
            if not source.exists():
                logger.debug(f"Skipping {location.name}: {source} does not exist")
                continue

            destination = backup_path / location.destination
            if source.is_dir():
                shutil.copytree(
                    source,
                    destination,
                    symlinks=True,
                    ignore=self._ignore_config_dir,
                )
            else:
                shutil.copy2(source, destination)

            setattr(contents, location.name, True)
            logger.debug(f"Copied {source} -> {destination}")

        return contents

    def _ignore_config_dir(self, directory: str, names: list[str]) -> list[str]:
        """copytree ignore hook that skips the configuration directory."""
        return [
            name
            for name in names
            if self.layout.is_config_dir(Path(directory) / name)
        ]

    def _discard(self, backup_path: Path) -> None:
        try:
            shutil.rmtree(backup_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove incomplete backup {backup_path}: {e}")

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def list_backups(self) -> list[BackupEntry]:
        """
        List all backups, newest first.

        Backups whose metadata is missing or unreadable are still listed,
        flagged as corrupted.
        """
        if not self.backup_dir.is_dir():
            return []

        entries = []
        paths = sorted(self.backup_dir.iterdir(), key=lambda p: p.name, reverse=True)
        for path in paths:
            if not path.is_dir() or path.name.startswith("."):
                continue
            entries.append(self._load_entry(path))

        return entries

    def get_backup(self, backup_id: str) -> BackupEntry:
        """
        Return a single backup entry.

        Raises:
            BackupNotFoundError: If the backup does not exist.
        """
        return self._load_entry(self._backup_path(backup_id))

    def _load_entry(self, path: Path) -> BackupEntry:
        try:
            metadata = self._read_metadata(path)
        except MetadataCorruptedError as e:
            logger.warning(f"Backup {path.name} has corrupted metadata: {e}")
            return BackupEntry(id=path.name, path=path, error=str(e))
        return BackupEntry(id=path.name, path=path, metadata=metadata)

    def _backup_path(self, backup_id: str) -> Path:
        if (
            not backup_id
            or backup_id.startswith(".")
            or "/" in backup_id
            or os.sep in backup_id
        ):
            raise BackupNotFoundError(backup_id)

        path = self.backup_dir / backup_id
        if not path.is_dir():
            raise BackupNotFoundError(backup_id)
        return path

    def _read_record(self, path: Path) -> Any:
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise MetadataCorruptedError(f"{path.name} is missing") from e
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MetadataCorruptedError(f"{path.name} is unreadable: {e}") from e

    def _read_metadata(self, backup_path: Path) -> BackupMetadata:
        return BackupMetadata.from_dict(self._read_record(backup_path / METADATA_FILE))

    def _read_integrity(self, backup_path: Path) -> IntegrityRecord:
        return IntegrityRecord.from_dict(
            self._read_record(backup_path / INTEGRITY_FILE)
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_backup(self, backup_id: str) -> VerificationReport:
        """
        Recompute a backup's checksum and compare it against its records.

        Every discrepancy is reported rather than stopping at the first.

        Returns:
            VerificationReport (``valid`` is True when no issues were found)

        Raises:
            BackupNotFoundError: If the backup does not exist.
        """
        backup_path = self._backup_path(backup_id)
        report = VerificationReport(backup_id=backup_id)
        issues = report.issues

        metadata: BackupMetadata | None = None
        integrity: IntegrityRecord | None = None

        try:
            metadata = self._read_metadata(backup_path)
        except MetadataCorruptedError as e:
            issues.append(f"Metadata record invalid: {e}")

        try:
            integrity = self._read_integrity(backup_path)
        except MetadataCorruptedError as e:
            issues.append(f"Integrity record invalid: {e}")

        digest = None
        try:
            digest = digest_tree(backup_path)
        except OSError as e:
            issues.append(f"Could not read backup contents: {e}")
        else:
            report.checksum = digest.checksum
            report.file_count = digest.file_count
            report.size_bytes = digest.size_bytes

        if metadata is not None:
            if metadata.id != backup_id:
                issues.append(
                    f"Metadata id '{metadata.id}' does not match directory name"
                )
            if digest is not None:
                if digest.checksum != metadata.checksum:
                    issues.append(
                        f"Checksum mismatch: metadata has {metadata.checksum}, "
                        f"contents hash to {digest.checksum}"
                    )
                if digest.file_count != metadata.files:
                    issues.append(
                        f"File count mismatch: metadata has {metadata.files}, "
                        f"found {digest.file_count}"
                    )
                if digest.size_bytes != metadata.size_bytes:
                    issues.append(
                        f"Size mismatch: metadata has {metadata.size_bytes} bytes, "
                        f"found {digest.size_bytes}"
                    )
            issues.extend(self._check_locations(backup_path, metadata.contents))

        if integrity is not None and digest is not None:
            if digest.checksum != integrity.checksum:
                issues.append(
                    f"Checksum mismatch: integrity record has {integrity.checksum}, "
                    f"contents hash to {digest.checksum}"
                )
            if digest.file_count != integrity.files:
                issues.append(
                    f"File count mismatch: integrity record has {integrity.files}, "
                    f"found {digest.file_count}"
                )

        if metadata is not None and integrity is not None:
            if metadata.checksum != integrity.checksum:
                issues.append("Metadata and integrity records disagree on checksum")
            if metadata.files != integrity.files:
                issues.append("Metadata and integrity records disagree on file count")

        if report.valid:
            logger.debug(f"Backup {backup_id} verified")
        else:
            logger.warning(
                f"Backup {backup_id} failed verification with "
                f"{len(issues)} issue(s)"
            )
        return report

    def _check_locations(
        self, backup_path: Path, contents: BackupContents
    ) -> list[str]:
        issues = []
        for location in self.watched_locations():
            expected = getattr(contents, location.name)
            present = (backup_path / location.destination).exists()
            if expected and not present:
                issues.append(f"Expected '{location.destination}' is missing")
            elif present and not expected:
                issues.append(f"Unexpected '{location.destination}' is present")
        return issues

    def verify_all(self) -> list[VerificationReport]:
        """Verify every listed backup, newest first."""
        return [self.verify_backup(entry.id) for entry in self.list_backups()]

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore_backup(self, backup_id: str, force: bool = False) -> RestoreResult:
        """
        Replace live configuration with a backup.

        The backup must pass verify_backup() with no issues at all; with
        ``force=True`` issues are logged and the restore proceeds as long
        as the metadata record is readable. A pre-restore backup of the
        live state is taken before anything is overwritten. Locations not
        contained in the backup are left untouched.

        Args:
            backup_id: Backup to restore
            force: Proceed despite verification issues

        Returns:
            RestoreResult with the restored metadata and the id of the
            pre-restore backup.

        Raises:
            LockTimeoutError: If another operation holds the lock.
            BackupNotFoundError: If the backup does not exist.
            IntegrityCheckError: If verification fails (and not forced).
            BackupCreateError: If the pre-restore backup fails.
            BackupRestoreError: If any location could not be restored.
        """
        with self.lock_manager.hold(self.lock_path, "restore"):
            backup_path = self._backup_path(backup_id)

            report = self.verify_backup(backup_id)
            if not report.valid:
                if not force:
                    raise IntegrityCheckError(report)
                logger.warning(
                    f"Restoring {backup_id} despite failed verification: "
                    + "; ".join(report.issues)
                )

            try:
                metadata = self._read_metadata(backup_path)
            except MetadataCorruptedError as e:
                raise IntegrityCheckError(report) from e

            pre_restore_id = self._create_locked(
                f"Pre-restore backup (before restoring {backup_id})",
                BackupKind.PRE_RESTORE,
            )

            failures: dict[str, str] = {}
            for location in self.watched_locations():
                if not getattr(metadata.contents, location.name):
                    continue
                snapshot = backup_path / location.destination
                try:
                    self._restore_location(snapshot, location.source)
                except OSError as e:
                    logger.error(f"Failed to restore {location.name}: {e}")
                    failures[location.name] = str(e)
                else:
                    logger.debug(f"Restored {location.name} -> {location.source}")

            if failures:
                raise BackupRestoreError(backup_id, pre_restore_id, failures)

        logger.info(f"Restored backup {backup_id} (previous state: {pre_restore_id})")
        return RestoreResult(metadata=metadata, pre_restore_id=pre_restore_id)

    def _restore_location(self, snapshot: Path, live: Path) -> None:
        if snapshot.is_dir() and not snapshot.is_symlink():
            if live.is_dir() and not live.is_symlink():
                clear_directory(live, self.layout)
            else:
                remove_path(live)
            shutil.copytree(snapshot, live, symlinks=True, dirs_exist_ok=True)
        else:
            if live.is_dir() and not live.is_symlink():
                shutil.rmtree(live)
            live.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(snapshot, live, follow_symlinks=False)

    # ------------------------------------------------------------------
    # Delete and retention
    # ------------------------------------------------------------------

    def delete_backup(self, backup_id: str) -> None:
        """
        Delete a backup.

        Raises:
            BackupNotFoundError: If the backup does not exist.
            BackupError: If the directory cannot be removed.
        """
        with self.lock_manager.hold(self.lock_path, "delete"):
            backup_path = self._backup_path(backup_id)
            try:
                shutil.rmtree(backup_path)
            except OSError as e:
                raise BackupError(f"Failed to delete backup {backup_id}: {e}") from e

        logger.info(f"Deleted backup {backup_id}")

    def clean_old_backups(
        self, keep_count: int, keep_days: int | None = None
    ) -> CleanupResult:
        """
        Delete old backups.

        Keeps the ``keep_count`` newest backups (by id) and, when
        ``keep_days`` is given, also deletes kept backups created more
        than that many days ago. A failed deletion is logged and
        recorded; the remaining deletions still run.

        Args:
            keep_count: Number of newest backups to keep
            keep_days: Maximum age in days (None or 0 = no age limit)

        Returns:
            CleanupResult with deleted ids, failures and bytes freed
        """
        if keep_count < 0:
            raise ValueError(f"keep_count must be >= 0, got {keep_count}")

        with self.lock_manager.hold(self.lock_path, "cleanup"):
            return self._clean_locked(keep_count, keep_days)

    def _auto_clean(self) -> None:
        if self.settings.max_count <= 0 and self.settings.max_days <= 0:
            return

        # Leave room for the backup about to be created
        if self.settings.max_count > 0:
            keep_count = self.settings.max_count - 1
        else:
            keep_count = len(self.list_backups())

        result = self._clean_locked(keep_count, self.settings.max_days or None)
        if result.deleted:
            logger.info(f"Retention removed {len(result.deleted)} old backup(s)")

    def _clean_locked(self, keep_count: int, keep_days: int | None) -> CleanupResult:
        entries = self.list_backups()
        doomed = entries[keep_count:]

        if keep_days:
            cutoff = datetime.now(timezone.utc) - timedelta(days=keep_days)
            for entry in entries[:keep_count]:
                created = entry.created or parse_backup_id(entry.id)
                if created is not None and created < cutoff:
                    doomed.append(entry)

        result = CleanupResult()
        for entry in doomed:
            size = directory_size(entry.path)
            try:
                shutil.rmtree(entry.path)
            except OSError as e:
                logger.warning(f"Failed to delete backup {entry.id}: {e}")
                result.failed[entry.id] = str(e)
                continue
            result.deleted.append(entry.id)
            result.freed_bytes += size
            logger.debug(f"Deleted old backup {entry.id}")

        result.kept = len(entries) - len(result.deleted)
        return result
