"""Typed external commands and the executor that runs them.

Components build ``Command`` values describing what should run; a
``CommandRunner`` decides how (real subprocess, or mock mode that only
records). Keeping the two apart lets container specs, validators and dump
invocations be asserted in tests without spawning anything.
"""
import gzip
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from panelo.core.errors import CommandError
from panelo.core.logger import get_logger

logger = get_logger(__name__)

_CHUNK = 64 * 1024


@dataclass(frozen=True)
class Command:
    """A single external command invocation."""

    argv: Tuple[str, ...]
    input: Optional[str] = None
    timeout: Optional[float] = None

    @classmethod
    def of(cls, *argv, input: Optional[str] = None, timeout: Optional[float] = None) -> "Command":
        """Build a command from positional arguments (non-strings are str()'d)."""
        return cls(tuple(str(a) for a in argv), input=input, timeout=timeout)

    def extend(self, *extra) -> "Command":
        """Return a copy with extra arguments appended."""
        return Command(self.argv + tuple(str(a) for a in extra), self.input, self.timeout)

    def substitute(self, token: str, value: str) -> "Command":
        """Return a copy with ``token`` replaced inside every argument."""
        return Command(tuple(a.replace(token, value) for a in self.argv), self.input, self.timeout)

    @property
    def program(self) -> str:
        return self.argv[0] if self.argv else ""

    def __str__(self) -> str:
        return shlex.join(self.argv)


@dataclass
class CommandResult:
    """Outcome of running a ``Command``."""

    command: Command
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout/stderr, stripped."""
        return "\n".join(p for p in (self.stdout.strip(), self.stderr.strip()) if p)

    def check(self) -> "CommandResult":
        """Raise CommandError unless the command succeeded."""
        if not self.ok:
            raise CommandError(self.command.argv, self.returncode, self.stdout, self.stderr)
        return self


@dataclass
class CommandRunner:
    """Run commands on the host.

    Args:
        mock: If True, log and record commands without executing them
    """

    mock: bool = False
    history: List[Command] = field(default_factory=list)

    def run(self, command: Command, check: bool = False) -> CommandResult:
        """Execute a command and capture its output.

        Args:
            command: Command to run
            check: Raise CommandError on non-zero exit

        Returns:
            CommandResult (returncode 127 when the program is missing,
            124 when the timeout expired)
        """
        self.history.append(command)

        if self.mock:
            logger.info(f"MOCK: Would run {command}")
            return CommandResult(command, 0)

        logger.debug(f"Running: {command}")
        try:
            proc = subprocess.run(
                list(command.argv),
                input=command.input,
                capture_output=True,
                text=True,
                timeout=command.timeout,
            )
            result = CommandResult(command, proc.returncode, proc.stdout or "", proc.stderr or "")
        except FileNotFoundError:
            result = CommandResult(command, 127, stderr=f"{command.program}: command not found")
        except subprocess.TimeoutExpired:
            result = CommandResult(command, 124, stderr=f"timed out after {command.timeout}s")

        if check:
            result.check()
        return result

    def run_to_file(self, command: Command, destination: Path, compress: bool = False) -> CommandResult:
        """Stream a command's stdout into a file, optionally gzip-compressed.

        The destination is removed again if the command fails, so callers
        never see a partial artifact.
        """
        self.history.append(command)

        if self.mock:
            logger.info(f"MOCK: Would run {command} > {destination}")
            return CommandResult(command, 0)

        destination = Path(destination)
        opener = gzip.open if compress else open
        try:
            with opener(destination, "wb") as sink:
                proc = subprocess.Popen(
                    list(command.argv),
                    stdin=subprocess.PIPE if command.input is not None else subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
                if command.input is not None:
                    proc.stdin.write(command.input.encode())
                    proc.stdin.close()
                shutil.copyfileobj(proc.stdout, sink, _CHUNK)
                stderr = proc.stderr.read().decode(errors="replace")
                returncode = proc.wait(timeout=command.timeout)
        except FileNotFoundError:
            returncode, stderr = 127, f"{command.program}: command not found"

        result = CommandResult(command, returncode, stderr=stderr)
        if not result.ok:
            destination.unlink(missing_ok=True)
        return result

    def run_from_file(self, command: Command, source: Path, decompress: bool = False) -> CommandResult:
        """Feed a file (optionally gzip-compressed) to a command's stdin."""
        self.history.append(command)

        if self.mock:
            logger.info(f"MOCK: Would run {command} < {source}")
            return CommandResult(command, 0)

        opener = gzip.open if decompress else open
        try:
            with opener(Path(source), "rb") as feed:
                proc = subprocess.Popen(
                    list(command.argv),
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
                shutil.copyfileobj(feed, proc.stdin, _CHUNK)
                proc.stdin.close()
                stdout = proc.stdout.read().decode(errors="replace")
                stderr = proc.stderr.read().decode(errors="replace")
                returncode = proc.wait(timeout=command.timeout)
        except FileNotFoundError:
            return CommandResult(command, 127, stderr=f"{command.program}: command not found")

        return CommandResult(command, returncode, stdout, stderr)

    def which(self, program: str) -> Optional[str]:
        """Locate a program on PATH (always found in mock mode)."""
        if self.mock:
            return f"/usr/bin/{program}"
        return shutil.which(program)

    def last(self, program: Optional[str] = None) -> Optional[Command]:
        """Return the most recent recorded command, optionally for one program."""
        for command in reversed(self.history):
            if program is None or command.program == program:
                return command
        return None


def docker(*args, input: Optional[str] = None, timeout: Optional[float] = None) -> Command:
    """Shorthand for a ``docker`` CLI command."""
    return Command.of("docker", *args, input=input, timeout=timeout)
