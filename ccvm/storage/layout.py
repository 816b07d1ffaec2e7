"""
On-disk layout of the ccvm configuration directory.

    <config_dir>/
        providers/          provider profiles (<alias>.json)
        config.json         tool state (default provider, init flag)
        settings.yaml       optional user settings
        backups/<id>/       snapshots written by BackupManager
        logs/               daily log files
        .backup-lock        sentinel present while an operation runs

The Claude settings directory (~/.claude by default) is watched as well.
By default the configuration directory lives inside it, so anything
copying or clearing the Claude directory must skip the configuration
directory.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ccvm.lock.manager import LOCK_FILE_NAME
from ccvm.utils import resolve_claude_dir, resolve_config_dir

if TYPE_CHECKING:
    from ccvm.backup.manager import BackupManager

logger = logging.getLogger(__name__)

# Owner-only permissions for everything ccvm creates
DIR_MODE = 0o700
FILE_MODE = 0o600

STATE_VERSION = "1.0"


@dataclass(frozen=True)
class ConfigLayout:
    """
    Resolved paths for one configuration directory.

    Usage:
        layout = ConfigLayout.resolve()             # defaults / env vars
        layout = ConfigLayout.resolve(tmp / "cfg", tmp / "claude")
        layout.providers_dir, layout.lock_file
    """

    config_dir: Path
    claude_dir: Path

    @classmethod
    def resolve(
        cls,
        config_dir: Path | str | None = None,
        claude_dir: Path | str | None = None,
    ) -> ConfigLayout:
        return cls(
            config_dir=resolve_config_dir(config_dir),
            claude_dir=resolve_claude_dir(claude_dir),
        )

    @property
    def providers_dir(self) -> Path:
        return self.config_dir / "providers"

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def backups_dir(self) -> Path:
        return self.config_dir / "backups"

    @property
    def logs_dir(self) -> Path:
        return self.config_dir / "logs"

    @property
    def lock_file(self) -> Path:
        return self.config_dir / LOCK_FILE_NAME

    def is_config_dir(self, path: Path) -> bool:
        """
        Whether path is the configuration directory itself.

        A symlink to the configuration directory counts as well.
        """
        try:
            target = self.config_dir.resolve()
            if path.is_symlink():
                return path.resolve() == target
            return _resolve_parent(path) == target
        except (OSError, RuntimeError):
            return False

    def encloses_config_dir(self, path: Path) -> bool:
        """
        Whether the configuration directory lives somewhere below path.

        A symlink never encloses it, even one pointing at an ancestor.
        """
        if path.is_symlink():
            return False
        try:
            return _resolve_parent(path) in self.config_dir.resolve().parents
        except (OSError, RuntimeError):
            return False


def _resolve_parent(path: Path) -> Path:
    # The last component is left as is so a symlink names itself.
    return path.parent.resolve() / path.name


def default_state() -> dict[str, Any]:
    """Fresh contents for config.json."""
    now = datetime.now(timezone.utc).isoformat()
    return {
        "version": STATE_VERSION,
        "initialized": True,
        "created": now,
        "last_updated": now,
        "default_provider": None,
    }


def write_private_json(path: Path, data: dict[str, Any]) -> None:
    """
    Write JSON readable only by the owner.

    Writes to a temporary sibling and renames it into place so readers
    never observe a half-written file.
    """
    tmp_path = path.with_name(f"{path.name}.tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    os.replace(tmp_path, path)
    os.chmod(path, FILE_MODE)


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
    os.chmod(path, DIR_MODE)


def initialize(layout: ConfigLayout) -> bool:
    """
    Create the configuration directory structure.

    Existing files are kept; a config.json that cannot be parsed is
    replaced with defaults.

    Returns:
        True if config.json was (re)created, False if it already existed.
    """
    for directory in (layout.config_dir, layout.providers_dir, layout.backups_dir):
        ensure_private_dir(directory)

    if layout.config_file.exists():
        try:
            with open(layout.config_file, encoding="utf-8") as f:
                state = json.load(f)
            if isinstance(state, dict):
                return False
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Recreating corrupted {layout.config_file}: {e}")
        else:
            logger.warning(f"Recreating malformed {layout.config_file}")

    write_private_json(layout.config_file, default_state())
    logger.debug(f"Wrote default state to {layout.config_file}")
    return True


def remove_path(path: Path) -> None:
    """Remove a file, symlink, or directory tree if it exists."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def clear_directory(path: Path, layout: ConfigLayout) -> None:
    """
    Remove everything inside path except the configuration directory.

    Symlinks are removed, never followed.
    """
    if not path.is_dir():
        return
    for child in path.iterdir():
        if layout.is_config_dir(child):
            continue
        if child.is_symlink():
            child.unlink()
            continue
        if layout.encloses_config_dir(child):
            clear_directory(child, layout)
            continue
        remove_path(child)


def reset(
    layout: ConfigLayout,
    backups: BackupManager,
    include_claude: bool = False,
) -> str:
    """
    Reset the managed configuration to defaults.

    Holds the lock for the whole operation, takes a pre-reset backup,
    removes providers and config.json (and the Claude directory apart
    from the configuration directory, if requested), then initializes
    again. Backups and logs are kept.

    Args:
        layout: Configuration layout to reset
        backups: BackupManager bound to the same layout
        include_claude: Also clear the Claude settings directory

    Returns:
        ID of the pre-reset backup.

    Raises:
        LockTimeoutError: If another operation holds the lock.
        BackupCreateError: If the safety backup fails (nothing is removed).
    """
    from ccvm.backup.models import BackupKind

    with backups.lock_manager.hold(layout.lock_file, "reset"):
        backup_id = backups.create_backup(
            "Pre-reset backup", kind=BackupKind.PRE_RESET
        )

        remove_path(layout.providers_dir)
        remove_path(layout.config_file)
        if include_claude:
            clear_directory(layout.claude_dir, layout)

        initialize(layout)

    logger.info(f"Configuration reset (pre-reset backup: {backup_id})")
    return backup_id
