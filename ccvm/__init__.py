"""
ccvm - Claude Code provider configuration manager.

Stores provider profiles under a private configuration directory and
protects that state with locked, checksummed backups.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
