"""Shared utilities for panelo CLI modules."""
from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from panelo.core.config import ProvisioningContext, build_context
from panelo.core.errors import PaneloError
from panelo.core.lock import run_lock
from panelo.core.logger import log_file_path, mask_secrets, tail_lines
from panelo.modules.base import ModuleServices

# Set by the root callback for the current invocation
_options = {'mock': False}

# Lines of carried instance output shown with an error
LOG_TAIL_LINES = 20


def set_mock(enabled: bool) -> None:
    _options['mock'] = enabled


def is_mock() -> bool:
    """Return True when CLI runs in mock mode (--mock or PANELO_MOCK=1)."""
    return _options['mock'] or os.environ.get("PANELO_MOCK") == "1"


def setup_file_logging(log_file: Optional[str] = None, verbose: bool = False) -> None:
    """Set up file logging for CLI commands.

    Args:
        log_file: Path to log file (optional)
        verbose: Enable verbose logging
    """
    from panelo.core.logger import setup_file_logging as _setup_file_logging
    _setup_file_logging(log_file=log_file, verbose=verbose)


def load_context(config_path: Optional[str] = None, **overrides) -> ProvisioningContext:
    """Build the provisioning context for one CLI invocation."""
    if is_mock():
        overrides['mock'] = True
    return build_context(config_path, **overrides)


def load_services(
    config_path: Optional[str] = None,
    verbose: bool = False,
    log_file: Optional[str] = None,
    **overrides,
) -> ModuleServices:
    """Context, file logging and every provisioning component, ready to use."""
    ctx = load_context(config_path, **overrides)
    setup_file_logging(log_file=log_file or str(ctx.log_file), verbose=verbose)
    return ModuleServices.build(ctx)


@contextmanager
def locked(services: ModuleServices):
    """Hold the run lock around a mutating verb (skipped in mock mode)."""
    ctx = services.ctx
    with run_lock(ctx.lock_file, enabled=not ctx.mock):
        yield


def confirm_action(message: str, yes_flag: bool = False, mock: bool = False) -> bool:
    """Prompt user for confirmation unless --yes or mock mode.

    Args:
        message: Confirmation message to display
        yes_flag: Skip prompt if True (from --yes flag)
        mock: Skip prompt if True (mock mode)

    Returns:
        True if confirmed, False otherwise
    """
    if yes_flag or mock:
        return True
    return typer.confirm(message)


def handle_cli_error(
    e: Exception,
    console: Console,
    verbose: bool = False,
    exit_code: Optional[int] = None,
) -> None:
    """Handle CLI errors with consistent formatting.

    Args:
        e: Exception to handle
        console: Rich console for output
        verbose: Show exception traceback if True
        exit_code: Exit code to use (default: the error's own exit code)
    """
    console.print(f"[red]Error:[/red] {escape(mask_secrets(str(e)))}", highlight=False)
    logs = tail_lines(getattr(e, 'logs', ''), LOG_TAIL_LINES)
    if logs:
        console.print("[dim]Last output:[/dim]")
        console.print(mask_secrets(logs), markup=False, highlight=False)
    log_file = log_file_path()
    if log_file is not None:
        console.print(f"[dim]Full log: {log_file}[/dim]")
    if verbose:
        console.print_exception()
    if exit_code is None:
        exit_code = int(e.exit_code) if isinstance(e, PaneloError) else 1
    raise typer.Exit(exit_code)


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    console.print(f"[green]{prefix}[/green] {message}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    console.print(f"[red]{prefix}[/red] {message}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    console.print(f"[yellow]{prefix}[/yellow] {message}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    console.print(f"[cyan]{prefix}[/cyan] {message}")
