"""Proxy site CLI commands - site add/remove/list."""
from typing import Optional

import typer
from rich.console import Console

from panelo.cli_support import (
    handle_cli_error,
    load_services,
    locked,
    print_error,
    print_info,
    print_success,
)
from panelo.core.errors import ExitCode, PaneloError
from panelo.models.config_template import ApplyStatus
from panelo.modules.nginx import NginxModule

console: Console = Console()

site_app = typer.Typer(help="Manage reverse proxy sites for applications")


def _report(result, action: str, name: str):
    if result.status is ApplyStatus.REJECTED:
        print_error(console, f"nginx rejected the configuration; {name} was not {action}")
        console.print(result.diagnostics, markup=False, highlight=False)
        raise typer.Exit(ExitCode.VALIDATION)
    if result.status is ApplyStatus.UNCHANGED:
        print_info(console, f"{name}: nothing to change")
        return
    print_success(console, f"Site {name} {action}")
    if not result.reloaded:
        print_info(console, "Proxy not reloaded; the change applies when nginx next starts")


@site_app.command("add")
def add_site(
    name: str = typer.Argument(..., help="Site name (lowercase letters, digits, dashes)"),
    domain: str = typer.Argument(..., help="Domain to serve"),
    port: int = typer.Argument(..., help="Local port the application listens on"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Proxy DOMAIN to an application on 127.0.0.1:PORT."""
    try:
        services = load_services(config, verbose)
        with locked(services):
            result = NginxModule(services).add_site(name, domain, port)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    _report(result, "added", name)


@site_app.command("remove")
def remove_site(
    name: str = typer.Argument(..., help="Site name"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Remove a site (kept if the remaining configuration would not validate)."""
    try:
        services = load_services(config, verbose)
        with locked(services):
            result = NginxModule(services).remove_site(name)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    _report(result, "removed", name)


@site_app.command("list")
def list_sites(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
):
    """List application sites."""
    try:
        sites = NginxModule(load_services(config)).sites.list_sites()
    except PaneloError as e:
        handle_cli_error(e, console)

    if not sites:
        print_info(console, "No application sites")
    for site in sites:
        console.print(f"  {site}")


def register_site_commands(app: typer.Typer, shared_console: Console):
    """Attach site subcommands to the main Typer app."""
    global console
    console = shared_console
    app.add_typer(site_app, name="site")
