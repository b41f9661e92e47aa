"""Exception taxonomy and CLI exit codes."""
from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    """Exit codes shared by every CLI verb."""

    OK = 0
    VALIDATION = 1
    DEPENDENCY = 3
    RUNTIME = 4
    LOCKED = 5


class PaneloError(Exception):
    """Base class for provisioning failures."""

    exit_code = ExitCode.RUNTIME


class ValidationError(PaneloError):
    """Invalid user input or rejected configuration."""

    exit_code = ExitCode.VALIDATION


class PreflightError(PaneloError):
    """Host environment cannot run the requested module."""

    exit_code = ExitCode.DEPENDENCY


class DependencyError(PaneloError):
    """A module dependency is missing, failed, or cyclic."""

    exit_code = ExitCode.DEPENDENCY


class CommandError(PaneloError):
    """An external command exited non-zero."""

    def __init__(self, argv, returncode: int, stdout: str = "", stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout).strip()
        message = f"Command failed ({returncode}): {' '.join(self.argv)}"
        if detail:
            message += f"\n{detail}"
        super().__init__(message)


class ReconcileError(PaneloError):
    """Filesystem state could not be reconciled."""


class CredentialError(PaneloError):
    """Credential file missing, unreadable, or invalid."""


class TemplateRenderError(PaneloError):
    """Template missing or left with unresolved placeholders."""

    exit_code = ExitCode.VALIDATION


class ExhaustedError(PaneloError):
    """Every candidate implementation failed to become ready."""

    def __init__(self, message: str, logs: Optional[str] = None):
        super().__init__(message)
        self.logs = logs or ""


class BackupError(PaneloError):
    """A backup or restore run failed."""


class LockError(PaneloError):
    """Raised when unable to acquire the run lock."""

    exit_code = ExitCode.LOCKED
