"""CLI package for ccvm."""

from ccvm.cli.formatters import (
    format_size,
    show_backup_list,
    show_cleanup_result,
    show_lock_info,
    show_verification_report,
)
from ccvm.cli.main import cli, load_settings

__all__ = [
    "cli",
    "format_size",
    "load_settings",
    "show_backup_list",
    "show_cleanup_result",
    "show_lock_info",
    "show_verification_report",
]
