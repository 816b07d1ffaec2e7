"""
ccvm.utils - Utility module

Common utilities including path resolution and logging configuration.
"""

from ccvm.utils.paths import (
    DEFAULT_CLAUDE_DIR,
    DEFAULT_CONFIG_DIR,
    resolve_claude_dir,
    resolve_config_dir,
)

__all__ = [
    "DEFAULT_CLAUDE_DIR",
    "DEFAULT_CONFIG_DIR",
    "resolve_claude_dir",
    "resolve_config_dir",
]
