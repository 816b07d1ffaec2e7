"""CLI output formatting functions.

This module contains functions for displaying backup listings, verification
reports and lock status on the command line.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import click

if TYPE_CHECKING:
    from ccvm.backup.models import BackupEntry, CleanupResult, VerificationReport
    from ccvm.lock.manager import Lock


def format_size(size_bytes: Optional[int]) -> str:
    """Human-readable size, e.g. 1536 -> '1.5 KB'."""
    if size_bytes is None:
        return "-"
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            if unit == "B":
                return f"{int(size)} B"
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def format_timestamp(value: Optional[datetime]) -> str:
    """Local-time display of an aware datetime."""
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def format_age(seconds: float) -> str:
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def show_backup_list(entries: list["BackupEntry"]) -> None:
    """
    Display backups as a table, newest first.

    Corrupted entries are shown in red with their error.

    Args:
        entries: Result of BackupManager.list_backups()
    """
    id_width = max([len(e.id) for e in entries] + [len("ID")])
    header = (
        f"{'ID':<{id_width}}  {'Created':<19}  {'Kind':<11}  "
        f"{'Files':>5}  {'Size':>9}  Description"
    )
    click.echo(header)
    click.echo("-" * len(header))

    for entry in entries:
        if entry.metadata is None:
            line = (
                f"{entry.id:<{id_width}}  {'-':<19}  {'-':<11}  "
                f"{'-':>5}  {'-':>9}  {entry.description}"
            )
            click.echo(click.style(line, fg="red"))
            if entry.error:
                click.echo(click.style(f"    {entry.error}", fg="red"))
            continue

        metadata = entry.metadata
        click.echo(
            f"{entry.id:<{id_width}}  {format_timestamp(metadata.created):<19}  "
            f"{metadata.kind:<11}  {metadata.files:>5}  "
            f"{format_size(metadata.size_bytes):>9}  {metadata.description}"
        )

    corrupted = sum(1 for e in entries if e.corrupted)
    summary = f"\nTotal: {len(entries)} backup(s)"
    if corrupted:
        summary += click.style(f", {corrupted} with corrupted metadata", fg="red")
    click.echo(summary)


def show_verification_report(
    report: "VerificationReport", verbose: bool = False
) -> None:
    """
    Display the outcome of verifying one backup.

    Args:
        report: Result of BackupManager.verify_backup()
        verbose: Also show recomputed checksum, file count and size
    """
    if report.valid:
        click.echo(f"{report.backup_id}: " + click.style("OK", fg="green"))
    else:
        click.echo(
            f"{report.backup_id}: "
            + click.style(f"FAILED ({len(report.issues)} issue(s))", fg="red")
        )
        for issue in report.issues:
            click.echo(f"  - {issue}")

    if verbose:
        click.echo(f"  Checksum: {report.checksum or '-'}")
        click.echo(f"  Files: {report.file_count}")
        click.echo(f"  Size: {format_size(report.size_bytes)}")


def show_cleanup_result(result: "CleanupResult") -> None:
    if not result.deleted and not result.failed:
        click.echo("No backups to clean up.")
        return

    for backup_id in result.deleted:
        click.echo(f"  Deleted {backup_id}")
    for backup_id, error in result.failed.items():
        click.echo(click.style(f"  Failed to delete {backup_id}: {error}", fg="red"))

    click.echo(
        click.style(
            f"\nDeleted {len(result.deleted)} backup(s), "
            f"freed {format_size(result.freed_bytes)}. "
            f"{result.kept} remaining.",
            fg="green" if not result.failed else "yellow",
        )
    )


def show_lock_info(lock: "Lock", stale_after: float) -> None:
    """Display who holds the lock and for how long."""
    now = datetime.now(timezone.utc)
    age = max(lock.age(now), 0.0)

    click.echo(f"Status: {click.style('Locked', fg='yellow')}")
    click.echo(f"Operation: {lock.operation}")
    click.echo(f"Process ID: {lock.pid or 'unknown'}")
    if lock.hostname:
        click.echo(f"Host: {lock.hostname}")
    click.echo(f"Since: {format_timestamp(lock.created)} ({format_age(age)} ago)")
    remaining = stale_after - age
    if remaining > 0:
        click.echo(f"Considered stale in: {format_age(remaining)}")
