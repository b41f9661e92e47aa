"""Application database CLI commands - db create/remove."""
from typing import Optional

import typer
from rich.console import Console

from panelo.cli_support import (
    confirm_action,
    handle_cli_error,
    is_mock,
    load_services,
    locked,
    print_info,
    print_success,
)
from panelo.core.errors import PaneloError
from panelo.modules.mysql import MySQLModule

console: Console = Console()

db_app = typer.Typer(help="Manage application databases")


@db_app.command("create")
def create_db(
    app_name: str = typer.Argument(..., metavar="APP", help="Application name (database app_<APP>)"),
    user: str = typer.Argument(..., help="Database user to create"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Create an application database and its user."""
    try:
        services = load_services(config, verbose)
        with locked(services):
            creds = MySQLModule(services).create_database(app_name, user)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    print_success(console, f"Database {creds['DB_NAME']} ready for {creds['DB_USER']}")
    print_info(console, f"Password stored in {creds.path}")


@db_app.command("remove")
def remove_db(
    app_name: str = typer.Argument(..., metavar="APP", help="Application name"),
    user: str = typer.Argument(..., help="Database user to drop"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Back up, then drop an application database and its user."""
    if not confirm_action(f"Drop database app_{app_name} and user {user}?", yes, is_mock()):
        raise typer.Exit(1)

    try:
        services = load_services(config, verbose)
        with locked(services):
            records = MySQLModule(services).remove_database(app_name, user)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    for record in records:
        print_info(console, f"Safety backup: {record.path}")
    print_success(console, f"Removed database app_{app_name}")


def register_db_commands(app: typer.Typer, shared_console: Console):
    """Attach db subcommands to the main Typer app."""
    global console
    console = shared_console
    app.add_typer(db_app, name="db")
