"""
ccvm.config - Settings module

Contains settings file loading, validation, and typed defaults.
"""

from ccvm.config.loader import DEFAULT_SETTINGS_FILE, ConfigError, ConfigLoader
from ccvm.config.settings import BackupSettings, LockSettings, Settings

__all__ = [
    "DEFAULT_SETTINGS_FILE",
    "BackupSettings",
    "ConfigError",
    "ConfigLoader",
    "LockSettings",
    "Settings",
]
