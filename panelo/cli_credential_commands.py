"""Credential and schedule CLI commands."""
from typing import List, Optional

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
    print_warning,
)
from panelo.core.errors import PaneloError
from panelo.core.schedule import default_entries

console: Console = Console()

credentials_app = typer.Typer(help="Show and rotate stored service credentials")
schedule_app = typer.Typer(help="Manage recurring jobs")


def _mask(key: str, value: str) -> str:
    if any(word in key for word in ("PASSWORD", "SECRET", "TOKEN", "KEY")):
        return "*" * 8
    return value


@credentials_app.command("show")
def show_credentials(
    service: str = typer.Argument(..., help="Service name (e.g. mysql)"),
    reveal: bool = typer.Option(False, "--reveal", help="Print secret values"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
):
    """Show the stored credentials of a service."""
    try:
        creds = load_services(config).vault.load(service)
    except PaneloError as e:
        handle_cli_error(e, console)

    table = Table(title=f"{service} ({creds.path})", show_header=True, header_style="bold cyan")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in creds.values.items():
        table.add_row(key, value if reveal else _mask(key, value))
    console.print(table)


@credentials_app.command("rotate")
def rotate_credentials(
    service: str = typer.Argument(..., help="Service name"),
    keys: List[str] = typer.Argument(..., help="Keys to regenerate"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Regenerate secrets; services using them must be repaired afterwards."""
    if not confirm_action(f"Rotate {', '.join(keys)} for {service}?", yes, is_mock()):
        raise typer.Exit(1)

    try:
        services = load_services(config, verbose)
        with locked(services):
            services.vault.rotate(service, keys)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    print_success(console, f"Rotated {len(keys)} credential(s) for {service}")
    print_warning(console, f"Run 'panelo repair {service}' so running instances pick them up")


@schedule_app.command("install")
def install_schedule(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Install (or refresh) backup and certificate renewal cron entries."""
    try:
        services = load_services(config, verbose)
        with locked(services):
            changed = services.schedule.install("backup", default_entries())
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    path = services.schedule.path_for("backup")
    if changed:
        print_success(console, f"Schedule written to {path}")
    else:
        print_info(console, f"{path} already up to date")


@schedule_app.command("show")
def show_schedule(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
):
    """Print installed schedule entries."""
    try:
        services = load_services(config)
    except PaneloError as e:
        handle_cli_error(e, console)

    entries = services.schedule.entries("backup")
    if not entries:
        print_info(console, "No schedule installed (run 'panelo schedule install')")
    for line in entries:
        console.print(f"  {line}", markup=False)


def register_credential_commands(app: typer.Typer, shared_console: Console):
    """Attach credentials and schedule subcommands to the main Typer app."""
    global console
    console = shared_console
    app.add_typer(credentials_app, name="credentials")
    app.add_typer(schedule_app, name="schedule")
