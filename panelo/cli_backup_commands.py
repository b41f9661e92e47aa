"""Backup CLI commands - backup, backups list/prune/restore."""
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from panelo.cli_support import (
    confirm_action,
    handle_cli_error,
    is_mock,
    load_services,
    locked,
    print_info,
    print_success,
)
from panelo.core.errors import PaneloError, ValidationError
from panelo.modules.backup import BackupModule
from panelo.modules.mysql import MySQLModule

console: Console = Console()

backups_app = typer.Typer(help="Inspect, prune and restore backup artifacts")


def _size(num: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if num < 1024:
            return f"{num:.0f} {unit}" if unit == "B" else f"{num:.1f} {unit}"
        num /= 1024
    return f"{num:.1f} TB"


def backup(
    target: Optional[str] = typer.Argument(None, help="What to back up: all, mysql or files (default: all)"),
    mode: Optional[str] = typer.Argument(None, help="Database dump mode: schema, data or full (default: full)"),
    database: Optional[str] = typer.Option(None, "--database", help="Only dump this database"),
    retention_days: Optional[int] = typer.Option(None, "--retention-days", help="Prune artifacts older than this"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Dump databases and/or configuration, then prune old artifacts."""
    try:
        services = load_services(config, verbose, log_file, backup_retention_days=retention_days)
        with locked(services):
            records = BackupModule(services).backup(target, mode, database=database)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    for record in records:
        print_success(console, f"{record.target} ({record.strategy.value}) -> {record.path} [{_size(record.size)}]")


@backups_app.command("list")
def list_backups(
    source: Optional[str] = typer.Argument(None, help="mysql or files (default: both)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
):
    """List backup artifacts, oldest first."""
    try:
        services = load_services(config)
        records = services.backups.list_records(source)
    except PaneloError as e:
        handle_cli_error(e, console)

    if not records:
        print_info(console, "No backups found")
        return

    table = Table(title="Backups", show_header=True, header_style="bold cyan")
    table.add_column("Source")
    table.add_column("Target", style="bold")
    table.add_column("Mode")
    table.add_column("Taken (UTC)")
    table.add_column("Size", justify="right")
    table.add_column("File", style="dim")

    for record in records:
        table.add_row(
            record.source,
            record.target,
            record.strategy.value,
            f"{record.timestamp:%Y-%m-%d %H:%M:%S}",
            _size(record.size),
            record.path.name,
        )
    console.print(table)


@backups_app.command("prune")
def prune_backups(
    days: Optional[int] = typer.Option(None, "--days", help="Retention window (default: configured retention)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Delete artifacts older than the retention window."""
    try:
        services = load_services(config, verbose)
        window = days if days is not None else services.ctx.backup_retention_days
        with locked(services):
            removed = services.backups.prune_older_than(window)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    print_success(console, f"Pruned {len(removed)} artifact(s) older than {window} day(s)")


@backups_app.command("restore")
def restore_backup(
    path: Path = typer.Argument(..., help="Artifact to restore"),
    database: Optional[str] = typer.Option(None, "--database", help="Restore into this database"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Stream a backup artifact back into its source."""
    try:
        services = load_services(config, verbose)
        if path.parent.name == "files":
            source = BackupModule(services).files_source()
        elif path.parent.name == "databases":
            source = MySQLModule(services).backup_source()
        else:
            raise ValidationError(f"{path} is not inside a panelo backup directory")

        if not confirm_action(f"Restore {path.name}? Existing data will be overwritten.", yes, is_mock()):
            raise typer.Exit(1)

        with locked(services):
            services.backups.restore(source, path, database)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    print_success(console, f"Restored {path.name}")


def register_backup_commands(app: typer.Typer, shared_console: Console):
    """Attach backup commands to the main Typer app."""
    global console
    console = shared_console

    app.command()(backup)
    app.add_typer(backups_app, name="backups")
