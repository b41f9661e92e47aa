#!/usr/bin/env python3
"""panelo CLI - Install and operate a self-hosted server panel."""

import typer
from rich.console import Console

from panelo import __version__
from panelo.cli_backup_commands import register_backup_commands
from panelo.cli_credential_commands import register_credential_commands
from panelo.cli_db_commands import register_db_commands
from panelo.cli_module_commands import register_module_commands
from panelo.cli_site_commands import register_site_commands
from panelo.cli_ssl_commands import register_ssl_commands
from panelo.cli_support import set_mock

app = typer.Typer(
    name="panelo",
    help="""panelo - Server panel installer

Containers for the database, reverse proxy, file browser and monitoring,
installed idempotently and in dependency order.

Quick start:
  panelo modules                 # What can be installed
  panelo --mock install          # Preview every action
  panelo install -d example.com  # Install everything
  panelo status                  # Check readiness
""",
    add_completion=False,
)

console = Console()


def _version(value: bool):
    if value:
        console.print(f"panelo {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    mock: bool = typer.Option(False, "--mock", help="Log actions instead of performing them"),
    version: bool = typer.Option(
        False, "--version", callback=_version, is_eager=True, help="Show version and exit"
    ),
):
    set_mock(mock)


# Attach modular subcommands
register_module_commands(app, console)
register_site_commands(app, console)
register_ssl_commands(app, console)
register_db_commands(app, console)
register_backup_commands(app, console)
register_credential_commands(app, console)

if __name__ == "__main__":
    app()
