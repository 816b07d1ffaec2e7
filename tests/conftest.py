"""Shared fixtures for the ccvm test suite."""

import json

import pytest

from ccvm.backup.manager import BackupManager
from ccvm.config.settings import BackupSettings
from ccvm.lock.manager import LockManager
from ccvm.storage.layout import ConfigLayout, initialize


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep tests away from the user's real directories and log files."""
    for name in (
        "CCVM_CONFIG_DIR",
        "CCVM_CLAUDE_DIR",
        "CCVM_SETTINGS_FILE",
        "CCVM_LOG_LEVEL",
        "CCVM_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CCVM_LOG_FILE", "none")


@pytest.fixture
def layout(tmp_path):
    """Layout with the configuration directory inside the Claude directory."""
    return ConfigLayout.resolve(
        config_dir=tmp_path / "claude" / "ccvm",
        claude_dir=tmp_path / "claude",
    )


@pytest.fixture
def populated_layout(layout):
    """Initialized layout with some Claude settings and one provider."""
    initialize(layout)

    claude = layout.claude_dir
    (claude / "settings.json").write_text(json.dumps({"theme": "dark"}))
    (claude / "commands").mkdir()
    (claude / "commands" / "review.md").write_text("Review the diff.\n")

    provider = {"alias": "work", "base_url": "https://api.example.com"}
    (layout.providers_dir / "work.json").write_text(json.dumps(provider))

    return layout


@pytest.fixture
def lock_manager():
    """LockManager with short waits so contention tests stay fast."""
    return LockManager(timeout=0.5, retry_interval=0.01, max_retries=100)


@pytest.fixture
def backups(populated_layout, lock_manager):
    """BackupManager without automatic retention."""
    return BackupManager(
        populated_layout,
        lock_manager,
        BackupSettings(max_count=0, max_days=0, auto_clean=False),
    )
