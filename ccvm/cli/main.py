"""
Command-line interface for ccvm.

Provides CLI commands for initializing the configuration directory and for
creating, verifying, restoring and cleaning up configuration backups.

Usage:
    # Show help
    ccvm --help

    # Create the configuration directory
    ccvm init

    # Back up and inspect
    ccvm backup create -d "before provider edit"
    ccvm backup list
    ccvm backup verify --all

    # Roll back
    ccvm backup restore 2024-01-20T10-30-00-123456

    # Recover from a crashed process
    ccvm lock status
    ccvm lock clear
"""

import sys
from typing import NoReturn, Optional

import click

from ccvm import __version__
from ccvm.backup.manager import (
    DEFAULT_DESCRIPTION,
    BackupError,
    BackupManager,
    BackupRestoreError,
    IntegrityCheckError,
)
from ccvm.cli.formatters import (
    format_size,
    show_backup_list,
    show_cleanup_result,
    show_lock_info,
    show_verification_report,
)
from ccvm.config.loader import ConfigError, ConfigLoader
from ccvm.config.settings import Settings
from ccvm.lock.manager import LockError, LockManager, StaleLockError
from ccvm.storage.layout import ConfigLayout, initialize, reset
from ccvm.utils.logging import cleanup_old_logs, get_logger, setup_logging
from ccvm.utils.paths import CLAUDE_DIR_ENV_VAR, CONFIG_DIR_ENV_VAR

SETTINGS_FILE_ENV_VAR = "CCVM_SETTINGS_FILE"


def load_settings(layout: ConfigLayout, settings_file: Optional[str]) -> Settings:
    """
    Load settings.yaml, falling back to defaults when it is invalid.

    Args:
        layout: Resolved configuration layout
        settings_file: Explicit settings file path, or None for the default

    Returns:
        Settings instance
    """
    raw = {}
    try:
        loader = ConfigLoader(config_dir=layout.config_dir)
        raw = loader.load_from_file(settings_file) if settings_file else loader.load()
        if raw:
            loader.validate(raw)
    except ConfigError as e:
        # Keep working with defaults rather than locking users out
        click.echo(
            click.style(f"Warning: Settings error: {e}", fg="yellow"), err=True
        )
        raw = {}
    return Settings.from_dict(raw)


def _fail(message: str) -> NoReturn:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="ccvm")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar=CONFIG_DIR_ENV_VAR,
    help="Configuration directory path (default: ~/.claude/ccvm).",
)
@click.option(
    "--claude-dir",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar=CLAUDE_DIR_ENV_VAR,
    help="Claude settings directory to protect (default: ~/.claude).",
)
@click.option(
    "--settings-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar=SETTINGS_FILE_ENV_VAR,
    help="Settings file path (default: <config-dir>/settings.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: Optional[str],
    claude_dir: Optional[str],
    settings_file: Optional[str],
) -> None:
    """
    Claude Code configuration manager.

    Keeps provider profiles and Claude settings in a configuration
    directory, with checksummed backups that can be verified and restored.
    """
    ctx.ensure_object(dict)

    layout = ConfigLayout.resolve(config_dir, claude_dir)
    settings = load_settings(layout, settings_file)

    # CLI flag wins; otherwise fall back to settings.yaml
    effective_verbose = verbose or settings.verbose

    log_dir = settings.log_dir or layout.logs_dir
    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)
    if settings.log_retention_count > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=settings.log_retention_count)

    lock_manager = LockManager.from_settings(settings.lock)
    # Never leave a lock behind, even on Ctrl-C
    ctx.call_on_close(lock_manager.release_all)

    ctx.obj["layout"] = layout
    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = effective_verbose
    ctx.obj["lock_manager"] = lock_manager
    ctx.obj["backups"] = BackupManager(layout, lock_manager, settings.backup)


# =============================================================================
# Init Command
# =============================================================================


@cli.command("init")
@click.pass_context
def init_command(ctx: click.Context) -> None:
    """
    Create the configuration directory.

    Creates the providers and backups directories and a default
    config.json. Existing files are kept; a corrupted config.json is
    replaced with defaults.

    Example:

        ccvm init
    """
    logger = get_logger(__name__)
    layout: ConfigLayout = ctx.obj["layout"]
    lock_manager: LockManager = ctx.obj["lock_manager"]

    try:
        with lock_manager.hold(layout.lock_file, "init"):
            created = initialize(layout)
    except LockError as e:
        logger.error(f"Init failed: {e}")
        _fail(str(e))
    except OSError as e:
        logger.exception(f"Init failed: {e}")
        _fail(f"Could not initialize {layout.config_dir}: {e}")

    if created:
        click.echo(
            click.style(f"Initialized configuration in {layout.config_dir}", fg="green")
        )
    else:
        click.echo(f"Configuration already initialized in {layout.config_dir}")


# =============================================================================
# Backup Commands
# =============================================================================


@cli.group("backup")
def backup_group() -> None:
    """
    Create, inspect and restore configuration backups.

    Each backup copies the Claude settings directory, provider profiles
    and config.json, and records a checksum that is checked before any
    restore.

    Examples:

        ccvm backup create -d "before upgrade"
        ccvm backup list
        ccvm backup verify --all
        ccvm backup restore <ID>
    """
    pass


@backup_group.command("create")
@click.option(
    "--description",
    "-d",
    default=DEFAULT_DESCRIPTION,
    show_default=True,
    help="Description stored with the backup.",
)
@click.pass_context
def backup_create_command(ctx: click.Context, description: str) -> None:
    """
    Snapshot the current configuration.

    Old backups beyond the configured retention are removed first.
    """
    logger = get_logger(__name__)
    backups: BackupManager = ctx.obj["backups"]

    try:
        backup_id = backups.create_backup(description)
        entry = backups.get_backup(backup_id)
    except (LockError, BackupError) as e:
        logger.error(f"Backup failed: {e}")
        _fail(str(e))
    except Exception as e:
        logger.exception(f"Unexpected error during backup: {e}")
        _fail(str(e))

    click.echo(click.style(f"Created backup {backup_id}", fg="green"))
    if entry.metadata is not None:
        click.echo(
            f"{entry.metadata.files} file(s), {format_size(entry.metadata.size_bytes)}"
        )


@backup_group.command("list")
@click.pass_context
def backup_list_command(ctx: click.Context) -> None:
    """List backups, newest first."""
    backups: BackupManager = ctx.obj["backups"]

    entries = backups.list_backups()
    if not entries:
        click.echo("No backups found.")
        click.echo(f"Backup directory: {backups.backup_dir}")
        return

    show_backup_list(entries)


@backup_group.command("verify")
@click.argument("backup_id", required=False)
@click.option("--all", "verify_all", is_flag=True, help="Verify every backup.")
@click.pass_context
def backup_verify_command(
    ctx: click.Context, backup_id: Optional[str], verify_all: bool
) -> None:
    """
    Check backups against their recorded checksums.

    Exits with status 1 if any backup has issues.

    Examples:

        ccvm backup verify 2024-01-20T10-30-00-123456
        ccvm backup verify --all
    """
    logger = get_logger(__name__)
    backups: BackupManager = ctx.obj["backups"]
    verbose = ctx.obj.get("verbose", False)

    if bool(backup_id) == verify_all:
        raise click.UsageError("Give either a BACKUP_ID or --all.")

    try:
        if verify_all:
            reports = backups.verify_all()
        else:
            reports = [backups.verify_backup(backup_id)]
    except BackupError as e:
        logger.error(f"Verify failed: {e}")
        _fail(str(e))

    if not reports:
        click.echo("No backups found.")
        return

    for report in reports:
        show_verification_report(report, verbose=verbose)

    failed = [r for r in reports if not r.valid]
    if failed:
        click.echo(
            click.style(
                f"\n{len(failed)} of {len(reports)} backup(s) failed verification.",
                fg="red",
            ),
            err=True,
        )
        sys.exit(1)


@backup_group.command("restore")
@click.argument("backup_id")
@click.option(
    "--force",
    is_flag=True,
    help="Restore even if the backup fails verification (not recommended).",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def backup_restore_command(
    ctx: click.Context, backup_id: str, force: bool, yes: bool
) -> None:
    """
    Replace the live configuration with a backup.

    The current state is saved as a pre-restore backup first, so a
    restore can itself be undone.

    Example:

        ccvm backup restore 2024-01-20T10-30-00-123456
    """
    logger = get_logger(__name__)
    backups: BackupManager = ctx.obj["backups"]

    if not yes:
        click.confirm(
            f"This will overwrite the current configuration with backup {backup_id}.\n"
            "Continue?",
            abort=True,
        )

    try:
        result = backups.restore_backup(backup_id, force=force)
    except IntegrityCheckError as e:
        logger.error(f"Restore refused: {e}")
        click.echo(
            click.style(f"Error: Backup {backup_id} failed verification:", fg="red"),
            err=True,
        )
        for issue in e.report.issues:
            click.echo(f"  - {issue}", err=True)
        click.echo("Nothing was changed. Use --force to restore anyway.", err=True)
        sys.exit(1)
    except BackupRestoreError as e:
        logger.error(f"Restore incomplete: {e}")
        _fail(str(e))
    except (LockError, BackupError) as e:
        logger.error(f"Restore failed: {e}")
        _fail(str(e))
    except Exception as e:
        logger.exception(f"Unexpected error during restore: {e}")
        _fail(str(e))

    click.echo(click.style(f"Restored backup {backup_id}", fg="green"))
    click.echo(f"Description: {result.metadata.description}")
    click.echo(f"Previous state saved as backup {result.pre_restore_id}")


@backup_group.command("delete")
@click.argument("backup_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def backup_delete_command(ctx: click.Context, backup_id: str, yes: bool) -> None:
    """Delete a backup."""
    logger = get_logger(__name__)
    backups: BackupManager = ctx.obj["backups"]

    if not yes:
        click.confirm(f"Delete backup {backup_id}?", abort=True)

    try:
        backups.delete_backup(backup_id)
    except (LockError, BackupError) as e:
        logger.error(f"Delete failed: {e}")
        _fail(str(e))

    click.echo(click.style(f"Deleted backup {backup_id}", fg="green"))


@backup_group.command("clean")
@click.option(
    "--keep",
    type=click.IntRange(min=0),
    default=None,
    help="Number of newest backups to keep (default: backup_max_count).",
)
@click.option(
    "--keep-days",
    type=click.IntRange(min=0),
    default=None,
    help="Delete backups older than this many days (default: backup_max_days).",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def backup_clean_command(
    ctx: click.Context, keep: Optional[int], keep_days: Optional[int], yes: bool
) -> None:
    """
    Delete old backups.

    Examples:

        # Apply the configured retention
        ccvm backup clean

        # Keep only the five newest backups
        ccvm backup clean --keep 5 --yes
    """
    logger = get_logger(__name__)
    backups: BackupManager = ctx.obj["backups"]
    settings: Settings = ctx.obj["settings"]

    keep_count = settings.backup.max_count if keep is None else keep
    max_days = settings.backup.max_days if keep_days is None else keep_days

    if keep is None and keep_count == 0:
        # 0 in settings means unlimited
        keep_count = len(backups.list_backups())

    if not yes:
        msg = f"Delete all but the {keep_count} newest backup(s)"
        if max_days:
            msg += f" and any older than {max_days} day(s)"
        click.confirm(msg + "?", abort=True)

    try:
        result = backups.clean_old_backups(keep_count, max_days or None)
    except (LockError, BackupError) as e:
        logger.error(f"Cleanup failed: {e}")
        _fail(str(e))

    show_cleanup_result(result)
    if result.failed:
        sys.exit(1)


# =============================================================================
# Lock Commands
# =============================================================================


@cli.group("lock")
def lock_group() -> None:
    """
    Inspect or clear the operation lock.

    The lock is held while a backup, restore or reset runs. A lock left
    behind by a crashed process is reclaimed automatically once it is
    older than lock_stale_after seconds; `ccvm lock clear` removes it
    immediately.
    """
    pass


@lock_group.command("status")
@click.pass_context
def lock_status_command(ctx: click.Context) -> None:
    """Show whether an operation currently holds the lock."""
    layout: ConfigLayout = ctx.obj["layout"]
    lock_manager: LockManager = ctx.obj["lock_manager"]
    verbose = ctx.obj.get("verbose", False)

    try:
        lock = lock_manager.read_lock(layout.lock_file)
    except StaleLockError as e:
        click.echo(f"Status: {click.style('Stale', fg='red')}")
        click.echo(str(e))
        click.echo("\nThe lock will be reclaimed by the next operation.")
        click.echo("To remove it now, run:")
        click.echo("  ccvm lock clear")
        return

    if lock is None:
        click.echo(f"Status: {click.style('Unlocked', fg='green')}")
    else:
        show_lock_info(lock, lock_manager.stale_after)

    if verbose:
        click.echo(f"\nLock file: {layout.lock_file}")


@lock_group.command("clear")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def lock_clear_command(ctx: click.Context, yes: bool) -> None:
    """
    Remove the lock file.

    Only use this when the process shown by `ccvm lock status` is no
    longer running.
    """
    logger = get_logger(__name__)
    layout: ConfigLayout = ctx.obj["layout"]
    lock_manager: LockManager = ctx.obj["lock_manager"]

    if not lock_manager.is_locked(layout.lock_file):
        click.echo("No lock present. Nothing to clear.")
        return

    if not yes:
        click.confirm(
            "Removing the lock while an operation is running can corrupt "
            "backups.\nContinue?",
            abort=True,
        )

    try:
        lock_manager.break_lock(layout.lock_file)
    except LockError as e:
        logger.error(f"Lock clear failed: {e}")
        _fail(str(e))

    click.echo(click.style("Lock cleared.", fg="green"))


# =============================================================================
# Reset Command
# =============================================================================


@cli.command("reset")
@click.option(
    "--include-claude",
    is_flag=True,
    help="Also clear the Claude settings directory.",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def reset_command(ctx: click.Context, include_claude: bool, yes: bool) -> None:
    """
    Reset the configuration to defaults.

    Removes provider profiles and config.json after taking a pre-reset
    backup. Backups and logs are kept.

    Example:

        ccvm reset
    """
    logger = get_logger(__name__)
    layout: ConfigLayout = ctx.obj["layout"]
    backups: BackupManager = ctx.obj["backups"]

    if not yes:
        msg = "This will remove all provider profiles and tool state"
        if include_claude:
            msg += f", and everything in {layout.claude_dir}"
        click.confirm(msg + ".\nA backup is taken first. Continue?", abort=True)

    try:
        backup_id = reset(layout, backups, include_claude=include_claude)
    except (LockError, BackupError) as e:
        logger.error(f"Reset failed: {e}")
        _fail(str(e))
    except Exception as e:
        logger.exception(f"Reset failed: {e}")
        _fail(str(e))

    click.echo(click.style("Configuration has been reset.", fg="green"))
    click.echo(f"Previous state saved as backup {backup_id}")
    click.echo(f"To undo: ccvm backup restore {backup_id}")

