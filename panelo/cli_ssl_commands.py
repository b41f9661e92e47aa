"""HTTPS CLI commands - ssl add/remove/list/renew."""
from datetime import datetime, timezone
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
    print_error,
    print_info,
    print_success,
)
from panelo.core.errors import ExitCode, PaneloError
from panelo.models.config_template import ApplyStatus
from panelo.modules.ssl import SslModule

console: Console = Console()

ssl_app = typer.Typer(help="Manage Let's Encrypt certificates and HTTPS")

EXPIRY_WARNING_DAYS = 30


def _module(config: Optional[str], verbose: bool = False, staging: bool = False) -> SslModule:
    module = SslModule(load_services(config, verbose))
    module.staging = staging
    return module


@ssl_app.command("add")
def add_ssl(
    domain: str = typer.Argument(..., help="Domain to obtain a certificate for"),
    email: str = typer.Argument(..., help="Contact address registered with Let's Encrypt"),
    staging: bool = typer.Option(False, "--staging", help="Use the Let's Encrypt staging CA"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Obtain a certificate for DOMAIN and serve it over HTTPS."""
    try:
        module = _module(config, verbose, staging)
        with locked(module.services):
            result = module.add(domain, email)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    if result.status is ApplyStatus.REJECTED:
        print_error(console, f"nginx rejected the HTTPS configuration for {domain}")
        console.print(result.diagnostics, markup=False, highlight=False)
        raise typer.Exit(ExitCode.VALIDATION)
    print_success(console, f"HTTPS enabled for {domain}")
    if not result.reloaded and result.status is ApplyStatus.APPLIED:
        print_info(console, "Proxy not reloaded; the change applies when nginx next starts")


@ssl_app.command("remove")
def remove_ssl(
    domain: str = typer.Argument(..., help="Domain to stop serving over HTTPS"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Stop serving HTTPS for DOMAIN and delete its certificate."""
    if not confirm_action(f"Delete the certificate for {domain}?", yes, is_mock()):
        raise typer.Exit(1)

    try:
        module = _module(config, verbose)
        with locked(module.services):
            result = module.remove(domain)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    if result.status is ApplyStatus.REJECTED:
        print_error(console, f"nginx rejected the configuration without {domain}; certificate kept")
        console.print(result.diagnostics, markup=False, highlight=False)
        raise typer.Exit(ExitCode.VALIDATION)
    if result.status is ApplyStatus.UNCHANGED:
        print_info(console, f"{domain} was not served over HTTPS")
        print_success(console, f"Certificate for {domain} removed")
        return
    print_success(console, f"HTTPS and certificate removed for {domain}")


@ssl_app.command("list")
def list_ssl(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
):
    """List certificates with their expiry."""
    try:
        certificates = _module(config).list_certificates()
    except PaneloError as e:
        handle_cli_error(e, console)

    if not certificates:
        print_info(console, "No certificates found")
        return

    now = datetime.now(timezone.utc)
    table = Table(title="Certificates", show_header=True, header_style="bold cyan")
    table.add_column("Domain", style="bold")
    table.add_column("Expires")
    table.add_column("Days left", justify="right")
    table.add_column("HTTPS")

    for info in certificates:
        days = info.days_left(now)
        if days is None:
            expires, remaining = "unknown", "-"
        else:
            expires = f"{info.expires:%Y-%m-%d}"
            colour = "red" if days < EXPIRY_WARNING_DAYS else "green"
            remaining = f"[{colour}]{days}[/{colour}]"
        table.add_row(info.domain, expires, remaining, "✓" if info.served else "")
    console.print(table)


@ssl_app.command("renew")
def renew_ssl(
    domain: Optional[str] = typer.Argument(None, help="Certificate to renew (default: all due)"),
    force: bool = typer.Option(False, "--force", help="Renew even if not yet due"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Renew certificates that are due and reload the proxy."""
    try:
        module = _module(config, verbose)
        with locked(module.services):
            renewed = module.renew(domain, force)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    if renewed:
        print_success(console, f"Renewed: {', '.join(renewed)}")
    else:
        print_info(console, "No certificate needed renewal")


def register_ssl_commands(app: typer.Typer, shared_console: Console):
    """Attach ssl subcommands to the main Typer app."""
    global console
    console = shared_console
    app.add_typer(ssl_app, name="ssl")
