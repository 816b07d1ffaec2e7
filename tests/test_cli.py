"""
Tests for the CLI module.

Tests the command-line interface using Click's testing utilities.
"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from ccvm import __version__
from ccvm.backup.integrity import METADATA_FILE
from ccvm.backup.manager import BackupManager
from ccvm.backup.models import RestoreResult
from ccvm.cli import cli, format_size
from ccvm.lock.manager import LockManager


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def base_args(populated_layout):
    """Global options pointing the CLI at the test directories."""
    return [
        "--config-dir",
        str(populated_layout.config_dir),
        "--claude-dir",
        str(populated_layout.claude_dir),
    ]


def create_backup(runner, base_args, description="cli backup"):
    result = runner.invoke(cli, base_args + ["backup", "create", "-d", description])
    assert result.exit_code == 0, result.output
    return result.output.split("Created backup ")[1].split()[0]


class TestCliGroup:
    """Tests for the top-level group."""

    def test_version(self, runner):
        """Test --version prints the package version."""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output
        assert "ccvm" in result.output

    def test_help_lists_commands(self, runner):
        """Test that --help shows every command group."""
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("init", "backup", "lock", "reset"):
            assert command in result.output

    def test_config_dir_from_env(self, runner, tmp_path):
        """Test that CCVM_CONFIG_DIR selects the configuration directory."""
        config_dir = tmp_path / "from-env"
        result = runner.invoke(
            cli,
            ["--claude-dir", str(tmp_path / "claude"), "init"],
            env={"CCVM_CONFIG_DIR": str(config_dir)},
        )
        assert result.exit_code == 0, result.output
        assert (config_dir / "config.json").exists()

    def test_invalid_settings_warns_and_continues(self, runner, base_args):
        """Test that a broken settings file falls back to defaults."""
        settings_file = base_args[1] + "/settings.yaml"
        with open(settings_file, "w") as f:
            f.write("backup_max_count: -1\n")

        result = runner.invoke(cli, base_args + ["backup", "list"])

        assert result.exit_code == 0
        assert "Warning: Settings error" in result.output

    def test_settings_file_option(self, runner, base_args, tmp_path):
        """Test that --settings-file is read instead of settings.yaml."""
        custom = tmp_path / "custom.yaml"
        custom.write_text("backup_max_count: 2\n")

        for i in range(4):
            create_backup(runner, base_args + ["--settings-file", str(custom)], str(i))

        result = runner.invoke(cli, base_args + ["backup", "list"])
        assert "Total: 2 backup(s)" in result.output


class TestInitCommand:
    """Tests for the init command."""

    def test_init(self, runner, tmp_path):
        """Test creating a fresh configuration directory."""
        config_dir = tmp_path / "cfg"
        result = runner.invoke(
            cli,
            ["--config-dir", str(config_dir), "--claude-dir", str(tmp_path), "init"],
        )

        assert result.exit_code == 0, result.output
        assert "Initialized configuration" in result.output
        assert (config_dir / "providers").is_dir()
        assert json.loads((config_dir / "config.json").read_text())["initialized"]

    def test_init_twice(self, runner, base_args):
        """Test that init on an existing directory changes nothing."""
        result = runner.invoke(cli, base_args + ["init"])
        assert result.exit_code == 0
        assert "already initialized" in result.output


class TestBackupCommands:
    """Tests for the backup command group."""

    def test_create(self, runner, base_args):
        """Test creating a backup."""
        result = runner.invoke(
            cli, base_args + ["backup", "create", "-d", "before upgrade"]
        )

        assert result.exit_code == 0, result.output
        assert "Created backup" in result.output
        assert "4 file(s)" in result.output

    def test_list_empty(self, runner, base_args):
        """Test listing with no backups."""
        result = runner.invoke(cli, base_args + ["backup", "list"])
        assert result.exit_code == 0
        assert "No backups found." in result.output

    def test_list(self, runner, base_args):
        """Test listing shows ids and descriptions."""
        backup_id = create_backup(runner, base_args, "before upgrade")

        result = runner.invoke(cli, base_args + ["backup", "list"])

        assert result.exit_code == 0
        assert backup_id in result.output
        assert "before upgrade" in result.output
        assert "manual" in result.output
        assert "Total: 1 backup(s)" in result.output

    def test_list_flags_corrupted(self, runner, base_args, populated_layout):
        """Test that corrupted backups are listed and flagged."""
        backup_id = create_backup(runner, base_args)
        (populated_layout.backups_dir / backup_id / METADATA_FILE).write_text("{")

        result = runner.invoke(cli, base_args + ["backup", "list"])

        assert result.exit_code == 0
        assert "(metadata corrupted)" in result.output
        assert "1 with corrupted metadata" in result.output

    def test_verify_ok(self, runner, base_args):
        """Test verifying an intact backup."""
        backup_id = create_backup(runner, base_args)

        result = runner.invoke(cli, base_args + ["backup", "verify", backup_id])

        assert result.exit_code == 0
        assert f"{backup_id}: OK" in result.output

    def test_verify_all_reports_failures(self, runner, base_args, populated_layout):
        """Test that verify --all exits 1 when any backup is damaged."""
        good = create_backup(runner, base_args)
        bad = create_backup(runner, base_args)
        (populated_layout.backups_dir / bad / "config.json").write_text("{}")

        result = runner.invoke(cli, base_args + ["backup", "verify", "--all"])

        assert result.exit_code == 1
        assert f"{good}: OK" in result.output
        assert f"{bad}: FAILED" in result.output
        assert "Checksum mismatch" in result.output

    def test_verify_requires_id_or_all(self, runner, base_args):
        """Test that verify needs exactly one target."""
        result = runner.invoke(cli, base_args + ["backup", "verify"])
        assert result.exit_code == 2

    def test_verify_unknown(self, runner, base_args):
        """Test verifying a backup that does not exist."""
        result = runner.invoke(
            cli, base_args + ["backup", "verify", "2000-01-01T00-00-00-000000"]
        )
        assert result.exit_code == 1
        assert "Error: Backup not found" in result.output

    def test_restore(self, runner, base_args, populated_layout):
        """Test restoring a backup."""
        backup_id = create_backup(runner, base_args)
        settings = populated_layout.claude_dir / "settings.json"
        original = settings.read_text()
        settings.write_text("changed")

        result = runner.invoke(
            cli, base_args + ["backup", "restore", backup_id, "--yes"]
        )

        assert result.exit_code == 0, result.output
        assert f"Restored backup {backup_id}" in result.output
        assert "Previous state saved as backup" in result.output
        assert settings.read_text() == original

    def test_restore_reports_its_own_pre_restore_backup(
        self, runner, base_args, populated_layout
    ):
        """Test that the printed recovery point comes from the restore itself."""
        backup_id = create_backup(runner, base_args)
        metadata = BackupManager(populated_layout).get_backup(backup_id).metadata
        returned = RestoreResult(metadata=metadata, pre_restore_id="from-restore")

        with patch.object(BackupManager, "restore_backup", return_value=returned):
            result = runner.invoke(
                cli, base_args + ["backup", "restore", backup_id, "--yes"]
            )

        assert result.exit_code == 0, result.output
        assert "Previous state saved as backup from-restore" in result.output

    def test_restore_prompts(self, runner, base_args, populated_layout):
        """Test that declining the prompt aborts the restore."""
        backup_id = create_backup(runner, base_args)
        settings = populated_layout.claude_dir / "settings.json"
        settings.write_text("changed")

        result = runner.invoke(
            cli, base_args + ["backup", "restore", backup_id], input="n\n"
        )

        assert result.exit_code == 1
        assert settings.read_text() == "changed"

    def test_restore_refuses_tampered_backup(self, runner, base_args, populated_layout):
        """Test that a damaged backup is not restored without --force."""
        backup_id = create_backup(runner, base_args)
        snapshot = populated_layout.backups_dir / backup_id / "claude" / "settings.json"
        snapshot.write_text("tampered")

        result = runner.invoke(
            cli, base_args + ["backup", "restore", backup_id, "--yes"]
        )

        assert result.exit_code == 1
        assert "failed verification" in result.output
        assert "--force" in result.output
        assert (populated_layout.claude_dir / "settings.json").read_text() != "tampered"

    def test_restore_force(self, runner, base_args, populated_layout):
        """Test that --force restores a damaged backup."""
        backup_id = create_backup(runner, base_args)
        snapshot = populated_layout.backups_dir / backup_id / "claude" / "settings.json"
        snapshot.write_text("tampered")

        result = runner.invoke(
            cli, base_args + ["backup", "restore", backup_id, "--yes", "--force"]
        )

        assert result.exit_code == 0, result.output
        assert (populated_layout.claude_dir / "settings.json").read_text() == "tampered"

    def test_delete(self, runner, base_args, populated_layout):
        """Test deleting a backup."""
        backup_id = create_backup(runner, base_args)

        result = runner.invoke(cli, base_args + ["backup", "delete", backup_id, "-y"])

        assert result.exit_code == 0
        assert not (populated_layout.backups_dir / backup_id).exists()

    def test_delete_unknown(self, runner, base_args):
        """Test deleting a backup that does not exist."""
        result = runner.invoke(
            cli, base_args + ["backup", "delete", "2000-01-01T00-00-00-000000", "-y"]
        )
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_clean(self, runner, base_args, populated_layout):
        """Test cleaning up with an explicit keep count."""
        ids = [create_backup(runner, base_args, str(i)) for i in range(3)]

        result = runner.invoke(
            cli, base_args + ["backup", "clean", "--keep", "1", "--yes"]
        )

        assert result.exit_code == 0, result.output
        assert "Deleted 2 backup(s)" in result.output
        remaining = [p.name for p in populated_layout.backups_dir.iterdir()]
        assert remaining == [ids[2]]

    def test_clean_nothing(self, runner, base_args):
        """Test cleaning up when nothing is old enough."""
        create_backup(runner, base_args)
        result = runner.invoke(cli, base_args + ["backup", "clean", "--yes"])
        assert result.exit_code == 0
        assert "No backups to clean up." in result.output

    def test_clean_rejects_negative_keep(self, runner, base_args):
        """Test that --keep must be non-negative."""
        result = runner.invoke(
            cli, base_args + ["backup", "clean", "--keep", "-1", "--yes"]
        )
        assert result.exit_code == 2


class TestLockCommands:
    """Tests for the lock command group."""

    def test_status_unlocked(self, runner, base_args):
        """Test lock status with no lock."""
        result = runner.invoke(cli, base_args + ["lock", "status"])
        assert result.exit_code == 0
        assert "Unlocked" in result.output

    def test_status_locked(self, runner, base_args, populated_layout):
        """Test lock status while another process holds the lock."""
        other = LockManager()
        with other.hold(populated_layout.lock_file, "restore"):
            result = runner.invoke(cli, base_args + ["lock", "status"])

        assert result.exit_code == 0
        assert "Locked" in result.output
        assert "Operation: restore" in result.output

    def test_status_corrupt(self, runner, base_args, populated_layout):
        """Test lock status with an unreadable lock file."""
        populated_layout.lock_file.write_text("garbage")

        result = runner.invoke(cli, base_args + ["lock", "status"])

        assert result.exit_code == 0
        assert "Stale" in result.output

    def test_clear(self, runner, base_args, populated_layout):
        """Test removing a leftover lock."""
        populated_layout.lock_file.write_text("{}")

        result = runner.invoke(cli, base_args + ["lock", "clear", "--yes"])

        assert result.exit_code == 0
        assert "Lock cleared." in result.output
        assert not populated_layout.lock_file.exists()

    def test_clear_without_lock(self, runner, base_args):
        """Test lock clear when nothing is locked."""
        result = runner.invoke(cli, base_args + ["lock", "clear", "--yes"])
        assert result.exit_code == 0
        assert "Nothing to clear" in result.output

    def test_contended_command_fails_with_holder(
        self, runner, base_args, populated_layout, tmp_path
    ):
        """Test that a busy lock yields exit 1 naming the holder."""
        settings = tmp_path / "fast.yaml"
        settings.write_text("lock_timeout: 0.1\nlock_retry_interval: 0.01\n")

        other = LockManager()
        with other.hold(populated_layout.lock_file, "reset"):
            result = runner.invoke(
                cli,
                base_args + ["--settings-file", str(settings), "backup", "create"],
            )

        assert result.exit_code == 1
        assert "Error: Locked by 'reset'" in result.output


class TestResetCommand:
    """Tests for the reset command."""

    def test_reset(self, runner, base_args, populated_layout):
        """Test resetting the configuration."""
        result = runner.invoke(cli, base_args + ["reset", "--yes"])

        assert result.exit_code == 0, result.output
        assert "Configuration has been reset." in result.output
        assert "ccvm backup restore" in result.output
        assert list(populated_layout.providers_dir.iterdir()) == []
        assert (populated_layout.claude_dir / "settings.json").exists()

    def test_reset_include_claude(self, runner, base_args, populated_layout):
        """Test resetting the Claude directory too."""
        result = runner.invoke(cli, base_args + ["reset", "--include-claude", "--yes"])

        assert result.exit_code == 0, result.output
        assert not (populated_layout.claude_dir / "settings.json").exists()
        assert populated_layout.config_file.exists()

    def test_reset_abort(self, runner, base_args, populated_layout):
        """Test that declining the prompt leaves everything in place."""
        result = runner.invoke(cli, base_args + ["reset"], input="n\n")

        assert result.exit_code == 1
        assert (populated_layout.providers_dir / "work.json").exists()


class TestFormatters:
    """Tests for output helpers."""

    @pytest.mark.parametrize(
        "size,expected",
        [
            (None, "-"),
            (0, "0 B"),
            (512, "512 B"),
            (1536, "1.5 KB"),
            (5 * 1024 * 1024, "5.0 MB"),
            (3 * 1024**4, "3072.0 GB"),
        ],
    )
    def test_format_size(self, size, expected):
        """Test human-readable sizes."""
        assert format_size(size) == expected
