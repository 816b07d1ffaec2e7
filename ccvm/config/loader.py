"""
Settings loader module for ccvm.

Provides YAML-based settings file loading with support for:
- Loading settings from the configuration directory or a custom path
- Graceful handling of missing settings files
- Validation of key types and value ranges
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from ccvm.utils import resolve_config_dir

# Default settings file name (inside the configuration directory)
DEFAULT_SETTINGS_FILE = "settings.yaml"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when settings loading or validation fails."""

    pass


class ConfigLoader:
    """
    YAML settings file loader.

    Attributes:
        config_dir: Directory containing the settings file
        settings_file: Name of the settings file

    Usage:
        loader = ConfigLoader()
        settings = loader.load_and_validate()

        # Load from specific file
        settings = loader.load_from_file("/path/to/settings.yaml")
    """

    # Known keys and their expected types
    VALID_KEYS: dict[str, type[Any] | tuple[type[Any], ...]] = {
        "verbose": bool,
        "log_dir": str,
        "log_retention_count": int,
        "backup_max_count": int,
        "backup_max_days": int,
        "backup_auto_clean": bool,
        "lock_timeout": (int, float),
        "lock_retry_interval": (int, float),
        "lock_max_retries": int,
        "lock_stale_after": (int, float),
    }

    def __init__(
        self,
        config_dir: Path | None = None,
        settings_file: str = DEFAULT_SETTINGS_FILE,
    ):
        """
        Initialize the settings loader.

        Args:
            config_dir: Directory containing the settings file.
                       Defaults to ~/.claude/ccvm or $CCVM_CONFIG_DIR
            settings_file: Name of the settings file (default: settings.yaml)
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.settings_file = settings_file

    def _get_settings_path(self) -> Path:
        return self.config_dir / self.settings_file

    def load(self) -> dict[str, Any]:
        """
        Load settings from the default settings file.

        Returns:
            Dictionary of settings, or empty dict if the file doesn't exist

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        return self.load_from_file(self._get_settings_path())

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load settings from a specific file.

        Returns an empty dict if the file doesn't exist, allowing
        graceful operation with built-in defaults.

        Args:
            path: Path to the settings file

        Returns:
            Dictionary of settings, or empty dict if file doesn't exist

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Settings file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                settings = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML settings file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read settings file: {e}") from e

        if settings is None:
            logger.debug(f"Settings file is empty: {path}")
            return {}

        if not isinstance(settings, dict):
            raise ConfigError(
                f"Settings file must contain a YAML dictionary, "
                f"got {type(settings).__name__}"
            )

        logger.debug(f"Loaded settings from {path}")
        return settings

    def validate(self, settings: dict[str, Any]) -> None:
        """
        Validate settings types and ranges.

        Unknown keys are ignored so newer settings files keep working
        with older releases.

        Args:
            settings: Settings dictionary to validate

        Raises:
            ConfigError: If a known key has the wrong type or range
        """
        if not isinstance(settings, dict):
            raise ConfigError(
                f"Settings must be a dictionary, got {type(settings).__name__}"
            )

        for key, value in settings.items():
            expected_type = self.VALID_KEYS.get(key)
            if expected_type is None:
                continue
            # bool is an int subclass; reject it for numeric keys
            is_bool = isinstance(value, bool)
            numeric_key = expected_type is not bool
            if not isinstance(value, expected_type) or (is_bool and numeric_key):
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        # Zero disables the corresponding limit
        non_negative_int_keys = [
            "log_retention_count",
            "backup_max_count",
            "backup_max_days",
        ]
        for key in non_negative_int_keys:
            if key in settings and settings[key] < 0:
                raise ConfigError(f"{key} must be >= 0, got {settings[key]}")

        if "lock_max_retries" in settings and settings["lock_max_retries"] < 1:
            raise ConfigError(
                f"lock_max_retries must be >= 1, got {settings['lock_max_retries']}"
            )

        positive_float_keys = [
            "lock_timeout",
            "lock_retry_interval",
            "lock_stale_after",
        ]
        for key in positive_float_keys:
            if key in settings and settings[key] <= 0:
                raise ConfigError(f"{key} must be > 0, got {settings[key]}")

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load settings and validate them.

        Returns:
            Validated settings dictionary

        Raises:
            ConfigError: If settings cannot be loaded or are invalid
        """
        settings = self.load()
        if settings:
            self.validate(settings)
        return settings
