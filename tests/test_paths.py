"""Tests for path utilities."""

from pathlib import Path

from ccvm.utils.paths import (
    CLAUDE_DIR_ENV_VAR,
    CONFIG_DIR_ENV_VAR,
    DEFAULT_CLAUDE_DIR,
    DEFAULT_CONFIG_DIR,
    resolve_claude_dir,
    resolve_config_dir,
)


class TestDefaults:
    """Test default directory constants."""

    def test_default_claude_dir_is_in_home(self):
        """Default Claude dir should be ~/.claude."""
        assert Path.home() / ".claude" == DEFAULT_CLAUDE_DIR

    def test_default_config_dir_is_inside_claude_dir(self):
        """Default config dir should live inside the Claude dir."""
        assert DEFAULT_CONFIG_DIR.parent == DEFAULT_CLAUDE_DIR


class TestResolveConfigDir:
    """Test resolve_config_dir function."""

    def test_explicit_path_string(self, tmp_path):
        """Explicit path string should be used."""
        assert resolve_config_dir(str(tmp_path)) == tmp_path.resolve()

    def test_explicit_path_object(self, tmp_path):
        """Explicit Path object should be used."""
        assert resolve_config_dir(tmp_path) == tmp_path.resolve()

    def test_explicit_path_with_tilde(self):
        """Explicit path with ~ should be expanded."""
        result = resolve_config_dir("~/custom-config")
        assert result == (Path.home() / "custom-config").resolve()

    def test_explicit_wins_over_env(self, tmp_path, monkeypatch):
        """Explicit path should take priority over the environment."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path / "env"))
        assert resolve_config_dir(tmp_path / "cli") == (tmp_path / "cli").resolve()

    def test_env_var_override(self, tmp_path, monkeypatch):
        """Environment variable should override default when no explicit path."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path))
        assert resolve_config_dir(None) == tmp_path.resolve()

    def test_empty_env_var_is_ignored(self, monkeypatch):
        """An empty environment variable should fall back to the default."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, "")
        assert resolve_config_dir(None) == DEFAULT_CONFIG_DIR.resolve()

    def test_default_when_no_explicit_and_no_env(self):
        """Default should be used when no explicit path and no env var."""
        assert resolve_config_dir(None) == DEFAULT_CONFIG_DIR.resolve()

    def test_returns_absolute_path(self):
        """Result should always be absolute."""
        assert resolve_config_dir("relative/path").is_absolute()


class TestResolveClaudeDir:
    """Test resolve_claude_dir function."""

    def test_explicit_path(self, tmp_path):
        """Explicit path should be used."""
        assert resolve_claude_dir(tmp_path) == tmp_path.resolve()

    def test_env_var_override(self, tmp_path, monkeypatch):
        """CCVM_CLAUDE_DIR should override the default."""
        monkeypatch.setenv(CLAUDE_DIR_ENV_VAR, str(tmp_path))
        assert resolve_claude_dir() == tmp_path.resolve()

    def test_default(self):
        """Default should be ~/.claude."""
        assert resolve_claude_dir() == DEFAULT_CLAUDE_DIR.resolve()

    def test_independent_of_config_env_var(self, tmp_path, monkeypatch):
        """CCVM_CONFIG_DIR should not move the Claude directory."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path))
        assert resolve_claude_dir() == DEFAULT_CLAUDE_DIR.resolve()
