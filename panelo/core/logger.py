"""Unified logging for panelo with console and file output.

Commands are logged with their full argument list, and container commands
carry credentials as ``-e NAME=value``; every handler masks such values
before anything reaches the console or the install log.
"""
import logging
import re
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

console = Console()

# Log file configuration
LOG_DIR = Path("/var/log/server-panel")
LOG_FILE = LOG_DIR / "panelo.log"

MASK = "****"
SECRET_ASSIGNMENT = re.compile(r'\b([A-Za-z0-9_]*(?:PASSWORD|PASSWD|PWD|SECRET|TOKEN|KEY)[A-Za-z0-9_]*)=("[^"]*"|\S+)')

# Log file chosen by setup_file_logging (None until configured)
_log_file: Optional[Path] = None


def mask_secrets(text: str) -> str:
    """Replace the value of every ``*PASSWORD*=``, ``*SECRET*=``... assignment."""
    return SECRET_ASSIGNMENT.sub(lambda m: f"{m.group(1)}={MASK}", text)


def tail_lines(text: str, limit: int = 20) -> str:
    """Last ``limit`` non-blank lines of captured output."""
    lines = [line for line in (text or "").splitlines() if line.strip()]
    return "\n".join(lines[-limit:]) if limit > 0 else ""


def log_file_path() -> Optional[Path]:
    """Install log in use for this run, if file logging was set up."""
    return _log_file


class SecretFilter(logging.Filter):
    """Mask credential assignments in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_secrets(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_file_logging(log_file: Optional[str] = None, verbose: bool = False):
    """Set up file logging for provisioning runs.

    Args:
        log_file: Path to log file (defaults to /var/log/server-panel/panelo.log)
        verbose: Enable debug-level logging

    Note:
        Creates log directory if it doesn't exist.
        Falls back to /tmp if /var/log/server-panel is not writable.
    """
    global _log_file

    if _log_file is not None:
        return

    target_log_file = Path(log_file) if log_file else LOG_FILE

    try:
        target_log_file.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        target_log_file = Path("/tmp/panelo.log")

    root_logger = logging.getLogger("panelo")
    file_handler = logging.FileHandler(target_log_file)
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.addFilter(SecretFilter())
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root_logger.addHandler(file_handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    _log_file = target_log_file
    root_logger.info(f"panelo logging initialized: {target_log_file}")


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance with console output.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger with Rich console handler

    Note:
        File logging must be enabled separately via setup_file_logging()
    """
    logger = logging.getLogger(name)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=console, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        handler.addFilter(SecretFilter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    return logger
