"""
Path utilities for configuration directory resolution.

Provides consistent path resolution for the ccvm configuration directory
and the Claude settings directory across all modules.
"""

from __future__ import annotations

import os
from pathlib import Path

# Claude settings directory (watched and backed up)
DEFAULT_CLAUDE_DIR = Path.home() / ".claude"

# Default configuration directory
DEFAULT_CONFIG_DIR = DEFAULT_CLAUDE_DIR / "ccvm"

# Environment variables for overriding the directories
CONFIG_DIR_ENV_VAR = "CCVM_CONFIG_DIR"
CLAUDE_DIR_ENV_VAR = "CCVM_CLAUDE_DIR"


def _resolve(explicit: Path | str | None, env_var: str, default: Path) -> Path:
    if explicit is not None:
        return Path(explicit).expanduser().resolve()

    env_dir = os.environ.get(env_var)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return default.expanduser().resolve()


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. CCVM_CONFIG_DIR environment variable
        3. Default directory (~/.claude/ccvm)

    Args:
        config_dir: Optional explicit configuration directory path.
                   Can be a Path object or string.

    Returns:
        Resolved Path to the configuration directory (expanduser and resolve applied)
    """
    return _resolve(config_dir, CONFIG_DIR_ENV_VAR, DEFAULT_CONFIG_DIR)


def resolve_claude_dir(claude_dir: Path | str | None = None) -> Path:
    """
    Resolve the Claude settings directory path.

    Same priority as resolve_config_dir(), using CCVM_CLAUDE_DIR and
    ~/.claude as the fallback.
    """
    return _resolve(claude_dir, CLAUDE_DIR_ENV_VAR, DEFAULT_CLAUDE_DIR)
