"""Module CLI commands - install, status, repair, diagnose, modules."""
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from panelo.cli_support import (
    handle_cli_error,
    load_services,
    locked,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from panelo.core.errors import ExitCode, PaneloError
from panelo.core.sequencer import ModuleSequencer, exit_code_for, summary_table
from panelo.modules import REGISTRY

console: Console = Console()


def install(
    modules: Optional[List[str]] = typer.Argument(None, help="Modules to install (default: all)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help="Domain the panel is served under"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Install modules and their dependencies, in dependency order."""
    try:
        services = load_services(config, verbose, log_file, domain=domain)
        with locked(services):
            reports = ModuleSequencer(services).install(modules or None)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    console.print()
    console.print(summary_table(reports))

    for report in reports:
        if report.logs:
            console.print(f"\n[bold]{report.name}[/bold] [dim]last output:[/dim]")
            console.print(report.logs, markup=False, highlight=False)

    code = exit_code_for(reports)
    if code:
        print_error(console, "Install finished with failures; re-run after fixing the cause")
        raise typer.Exit(code)
    print_success(console, "All modules installed")


def status(
    module: Optional[str] = typer.Argument(None, help="Module to check (default: all)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Show instance readiness (exit 0 = ready, 1 = not ready)."""
    try:
        services = load_services(config, verbose)
        sequencer = ModuleSequencer(services)
        names = [module] if module else list(REGISTRY)
        rows = []
        for name in names:
            for instance in sequencer.module(name).status():
                rows.append((name, instance))
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    table = Table(title="Status", show_header=True, header_style="bold cyan")
    table.add_column("Module", style="bold")
    table.add_column("Instance")
    table.add_column("State")
    table.add_column("Ready")
    table.add_column("Detail", style="dim")

    for name, instance in rows:
        ready = "[green]✓ ready[/green]" if instance.ready else "[red]✗ not ready[/red]"
        table.add_row(name, instance.name, instance.state.value, ready, instance.detail)
    console.print(table)

    if not all(instance.ready for _, instance in rows):
        raise typer.Exit(ExitCode.VALIDATION)


def repair(
    module: str = typer.Argument(..., help="Module to repair"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Recreate a module's instances and re-run its install steps."""
    try:
        services = load_services(config, verbose, log_file)
        sequencer = ModuleSequencer(services)
        target = sequencer.module(module)
        with locked(services):
            report = target.repair(sequencer.clock() + services.ctx.install_timeout)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    if not report.ok:
        print_error(console, f"Repair of {module} failed at '{report.failed_step}': {report.error}")
        if report.logs:
            console.print(report.logs, markup=False, highlight=False)
        raise typer.Exit(report.exit_code or ExitCode.RUNTIME)
    print_success(console, f"{module} repaired")


def diagnose(
    module: str = typer.Argument(..., help="Module to inspect"),
    tail: int = typer.Option(20, "--tail", "-n", help="Log lines per instance"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Print instance state and recent output for a module."""
    try:
        services = load_services(config, verbose)
        report = ModuleSequencer(services).module(module).diagnose(tail)
    except PaneloError as e:
        handle_cli_error(e, console, verbose)

    if not report:
        print_info(console, f"{module} runs no instances")
        return

    for name, details in report.items():
        console.print(f"\n[bold]{name}[/bold]  state: {details['state']}  ready: {details['ready']}")
        if details['logs']:
            console.print(details['logs'], markup=False, highlight=False)
        else:
            print_warning(console, "no output")


def list_modules():
    """List registered modules and their dependencies."""
    table = Table(title="Modules", show_header=True, header_style="bold cyan")
    table.add_column("Module", style="bold")
    table.add_column("Depends on")
    table.add_column("Verbs")
    table.add_column("Description", style="dim")

    for name, module in REGISTRY.items():
        descriptor = module.descriptor
        verbs = [v.value for v in descriptor.verbs] + list(descriptor.extra_verbs)
        table.add_row(
            name,
            ", ".join(descriptor.depends_on) or "-",
            ", ".join(verbs),
            descriptor.description,
        )
    console.print(table)


def register_module_commands(app: typer.Typer, shared_console: Console):
    """Register module lifecycle commands with the main Typer app.

    Args:
        app: Main Typer application
        shared_console: Shared Rich console instance
    """
    global console
    console = shared_console

    app.command()(install)
    app.command()(status)
    app.command()(repair)
    app.command()(diagnose)
    app.command(name="modules")(list_modules)
