"""
Records stored in and reported about backups.

Every JSON record carries a ``version`` field. Readers ignore unknown
fields and treat missing or mistyped required fields as corruption, so a
backup written by a newer release still lists under an older one.

metadata.json:

    {
        "version": "1.0",
        "id": "2024-01-20T10-30-00-123456",
        "timestamp": "2024-01-20T10-30-00-123456",
        "description": "before upgrade",
        "created": "2024-01-20T10:30:00.123456+00:00",
        "kind": "manual",
        "size_bytes": 2048,
        "files": 7,
        "checksum": "9f86d0...",
        "contents": {"claude": true, "providers": true, "config": false},
        "tool_version": "1.0.0",
        "host": {"hostname": "laptop", "platform": "Linux", ...}
    }

.integrity:

    {"version": "1.0", "created": "...", "checksum": "9f86d0...", "files": 7}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

RECORD_VERSION = "1.0"

CORRUPTED_DESCRIPTION = "(metadata corrupted)"


class MetadataCorruptedError(Exception):
    """Raised when a backup record is missing, unreadable, or malformed."""

    pass


class BackupKind(str, Enum):
    """Why a backup was taken."""

    MANUAL = "manual"
    PRE_RESTORE = "pre-restore"
    PRE_RESET = "pre-reset"


def _require(data: dict[str, Any], key: str, expected: type | tuple[type, ...]) -> Any:
    if key not in data:
        raise MetadataCorruptedError(f"Missing field '{key}'")
    value = data[key]
    # bool is an int subclass; counts must be real ints
    if not isinstance(value, expected) or (
        isinstance(value, bool) and expected is int
    ):
        raise MetadataCorruptedError(
            f"Field '{key}' has unexpected type {type(value).__name__}"
        )
    return value


def _check_version(data: dict[str, Any]) -> str:
    version = _require(data, "version", str)
    major = version.split(".", 1)[0]
    if major != RECORD_VERSION.split(".", 1)[0]:
        raise MetadataCorruptedError(f"Unsupported record version '{version}'")
    return version


@dataclass
class BackupContents:
    """Which watched locations a backup contains."""

    claude: bool = False
    providers: bool = False
    config: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "claude": self.claude,
            "providers": self.providers,
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, data: Any) -> BackupContents:
        if not isinstance(data, dict):
            raise MetadataCorruptedError("Field 'contents' must be an object")
        return cls(
            claude=bool(data.get("claude", False)),
            providers=bool(data.get("providers", False)),
            config=bool(data.get("config", False)),
        )


@dataclass
class BackupMetadata:
    """
    Metadata record written to metadata.json.

    Attributes:
        id: Backup identifier (also the directory name)
        description: Free-text description from the caller
        created: Creation time (timezone-aware UTC)
        kind: Why the backup was taken
        size_bytes: Total size of the copied files
        files: Number of copied files
        checksum: Tree digest of the copied files
        contents: Which watched locations were copied
        tool_version: ccvm version that wrote the backup
        host: Diagnostic information about the writing machine
    """

    id: str
    description: str
    created: datetime
    size_bytes: int
    files: int
    checksum: str
    contents: BackupContents = field(default_factory=BackupContents)
    kind: str = BackupKind.MANUAL.value
    tool_version: str = ""
    host: dict[str, str] = field(default_factory=dict)
    version: str = RECORD_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "id": self.id,
            "timestamp": self.id,
            "description": self.description,
            "created": self.created.isoformat(),
            "kind": self.kind,
            "size_bytes": self.size_bytes,
            "files": self.files,
            "checksum": self.checksum,
            "contents": self.contents.to_dict(),
            "tool_version": self.tool_version,
            "host": dict(self.host),
        }

    @classmethod
    def from_dict(cls, data: Any) -> BackupMetadata:
        """
        Parse a metadata record.

        Raises:
            MetadataCorruptedError: If required fields are missing or invalid.
        """
        if not isinstance(data, dict):
            raise MetadataCorruptedError("Metadata must be a JSON object")

        version = _check_version(data)
        created_raw = _require(data, "created", str)
        try:
            created = datetime.fromisoformat(created_raw)
        except ValueError as e:
            raise MetadataCorruptedError(f"Invalid 'created' value: {e}") from e
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)

        host = data.get("host", {})
        return cls(
            id=_require(data, "id", str),
            description=_require(data, "description", str),
            created=created,
            size_bytes=_require(data, "size_bytes", int),
            files=_require(data, "files", int),
            checksum=_require(data, "checksum", str),
            contents=BackupContents.from_dict(_require(data, "contents", dict)),
            kind=str(data.get("kind", BackupKind.MANUAL.value)),
            tool_version=str(data.get("tool_version", "")),
            host={str(k): str(v) for k, v in host.items()}
            if isinstance(host, dict)
            else {},
            version=version,
        )


@dataclass
class IntegrityRecord:
    """Secondary checksum record written to .integrity after the metadata."""

    created: datetime
    checksum: str
    files: int
    version: str = RECORD_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "created": self.created.isoformat(),
            "checksum": self.checksum,
            "files": self.files,
        }

    @classmethod
    def from_dict(cls, data: Any) -> IntegrityRecord:
        """
        Parse an integrity record.

        Raises:
            MetadataCorruptedError: If required fields are missing or invalid.
        """
        if not isinstance(data, dict):
            raise MetadataCorruptedError("Integrity record must be a JSON object")

        version = _check_version(data)
        try:
            created = datetime.fromisoformat(_require(data, "created", str))
        except ValueError as e:
            raise MetadataCorruptedError(f"Invalid 'created' value: {e}") from e
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)

        return cls(
            created=created,
            checksum=_require(data, "checksum", str),
            files=_require(data, "files", int),
            version=version,
        )


@dataclass
class BackupEntry:
    """
    One backup as seen by list_backups().

    A directory whose metadata cannot be read is still an entry, with
    ``metadata`` set to None and ``error`` describing the problem.
    """

    id: str
    path: Path
    metadata: BackupMetadata | None = None
    error: str | None = None

    @property
    def corrupted(self) -> bool:
        return self.metadata is None

    @property
    def description(self) -> str:
        if self.metadata is None:
            return CORRUPTED_DESCRIPTION
        return self.metadata.description

    @property
    def created(self) -> datetime | None:
        return self.metadata.created if self.metadata else None

    @property
    def size_bytes(self) -> int | None:
        return self.metadata.size_bytes if self.metadata else None

    @property
    def file_count(self) -> int | None:
        return self.metadata.files if self.metadata else None


@dataclass
class VerificationReport:
    """
    Outcome of verify_backup().

    Attributes:
        backup_id: Backup that was verified
        issues: Every discrepancy found (empty when valid)
        checksum: Recomputed checksum, if the tree could be read
        file_count: Recomputed file count
        size_bytes: Recomputed size
    """

    backup_id: str
    issues: list[str] = field(default_factory=list)
    checksum: str | None = None
    file_count: int = 0
    size_bytes: int = 0

    @property
    def valid(self) -> bool:
        return not self.issues


@dataclass
class CleanupResult:
    """Outcome of clean_old_backups()."""

    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    kept: int = 0
    freed_bytes: int = 0


@dataclass
class RestoreResult:
    """
    Outcome of restore_backup().

    Attributes:
        metadata: Metadata of the restored backup
        pre_restore_id: Backup holding the state that was replaced
    """

    metadata: BackupMetadata
    pre_restore_id: str
