"""Shared test fixtures for panelo tests."""
import gzip
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from panelo.core.command import Command, CommandResult, CommandRunner
from panelo.core.config import ProvisioningContext
from panelo.modules.base import ModuleServices


class FakeRunner(CommandRunner):
    """CommandRunner that simulates the docker CLI instead of spawning processes.

    Containers started with ``docker run`` report the states scripted for
    their image in ``image_states`` (the last state repeats); containers of
    other images are running. Rules registered with ``on()`` take precedence
    over the simulation and match by argv prefix.
    """

    def __init__(self):
        super().__init__(mock=False)
        self.rules: List[tuple] = []
        self.containers: Dict[str, dict] = {}
        self.image_states: Dict[str, List[str]] = {}
        self.image_logs: Dict[str, str] = {}
        self.networks = set()
        self.missing_programs = set()
        self.restored: List[bytes] = []

    def on(self, *prefix, returncode: int = 0, stdout: str = "", stderr: str = "",
           results: Optional[List[CommandResult]] = None, hook: Optional[Callable[[Command], None]] = None):
        """Script the result of every command starting with ``prefix``.

        ``results`` is consumed in order and its last entry repeats.
        ``hook`` is called with each matching command before it answers.
        """
        scripted = list(results) if results else [(returncode, stdout, stderr)]
        self.rules.append((tuple(str(p) for p in prefix), scripted, hook))

    def run(self, command: Command, check: bool = False) -> CommandResult:
        self.history.append(command)
        result = self._respond(command)
        if check:
            result.check()
        return result

    def run_to_file(self, command: Command, destination: Path, compress: bool = False) -> CommandResult:
        self.history.append(command)
        result = self._respond(command)
        if result.ok:
            opener = gzip.open if compress else open
            with opener(destination, "wb") as sink:
                sink.write(result.stdout.encode())
        return CommandResult(command, result.returncode, stderr=result.stderr)

    def run_from_file(self, command: Command, source: Path, decompress: bool = False) -> CommandResult:
        self.history.append(command)
        opener = gzip.open if decompress else open
        with opener(source, "rb") as feed:
            self.restored.append(feed.read())
        return self._respond(command)

    def which(self, program: str) -> Optional[str]:
        if program in self.missing_programs:
            return None
        return f"/usr/bin/{program}"

    def commands(self, *prefix) -> List[Command]:
        """Recorded commands whose argv starts with ``prefix``."""
        prefix = tuple(str(p) for p in prefix)
        return [c for c in self.history if c.argv[:len(prefix)] == prefix]

    def _respond(self, command: Command) -> CommandResult:
        argv = command.argv
        for prefix, scripted, hook in reversed(self.rules):
            if argv[:len(prefix)] == prefix:
                if hook is not None:
                    hook(command)
                entry = scripted.pop(0) if len(scripted) > 1 else scripted[0]
                if isinstance(entry, CommandResult):
                    return CommandResult(command, entry.returncode, entry.stdout, entry.stderr)
                returncode, stdout, stderr = entry
                return CommandResult(command, returncode, stdout, stderr)

        if command.program == "docker":
            return self._docker(command)
        return CommandResult(command, 0)

    def _docker(self, command: Command) -> CommandResult:
        argv = command.argv
        verb = argv[1] if len(argv) > 1 else ""

        if verb == "run" and "--rm" not in argv:
            name = argv[argv.index("--name") + 1]
            image = next((i for i in self.image_states if i in argv), None)
            self.containers[name] = {
                'image': image,
                'states': list(self.image_states.get(image, ["running"])),
            }
            return CommandResult(command, 0, stdout=f"{name}-0123456789abcdef\n")

        if verb == "inspect":
            container = self.containers.get(argv[-1])
            if container is None:
                return CommandResult(command, 1, stderr=f"Error: No such object: {argv[-1]}")
            states = container['states']
            state = states.pop(0) if len(states) > 1 else states[0]
            return CommandResult(command, 0, stdout=f"{state}\n")

        if verb == "rm":
            self.containers.pop(argv[-1], None)
            return CommandResult(command, 0)

        if verb == "logs":
            container = self.containers.get(argv[-1])
            if container is None:
                return CommandResult(command, 1)
            return CommandResult(command, 0, stdout=self.image_logs.get(container['image'], ""))

        if verb == "exec":
            index = 2
            while argv[index].startswith("-"):
                index += 2 if argv[index] == "-e" else 1
            if argv[index] not in self.containers:
                return CommandResult(command, 1, stderr=f"Error: No such container: {argv[index]}")
            return CommandResult(command, 0)

        if verb == "network":
            if argv[2] == "inspect":
                return CommandResult(command, 0 if argv[3] in self.networks else 1)
            if argv[2] == "create":
                self.networks.add(argv[3])
            return CommandResult(command, 0)

        if verb == "info":
            return CommandResult(command, 0, stdout="24.0.7\n")

        return CommandResult(command, 0)


class FakeClock:
    """Monotonic clock advanced only by its own sleep()."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int):
        self.status_code = status_code


class FakeHttp:
    """requests.get stand-in answering every URL with ``status``."""

    def __init__(self, status: int = 200):
        self.status = status
        self.calls: List[str] = []

    def __call__(self, url, timeout=None, allow_redirects=True):
        self.calls.append(url)
        return FakeResponse(self.status)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def ctx(tmp_path):
    """Context rooted in a temporary directory, without ownership changes."""
    data_root = tmp_path / "server-panel"
    return ProvisioningContext(
        data_root=data_root,
        nginx_dir=data_root / "nginx",
        letsencrypt_dir=tmp_path / "letsencrypt",
        cron_dir=tmp_path / "cron.d",
        log_file=tmp_path / "panelo.log",
        lock_file=tmp_path / "panelo.lock",
        health_interval=1.0,
        health_max_attempts=5,
        manage_ownership=False,
    )


@pytest.fixture
def services(ctx, runner, clock, http):
    return ModuleServices.build(ctx, runner=runner, clock=clock, sleep=clock.sleep, http_get=http)


@pytest.fixture
def meminfo(tmp_path):
    """A /proc/meminfo with 2GB available."""
    path = tmp_path / "meminfo"
    path.write_text("MemTotal:        4000000 kB\nMemAvailable:    2097152 kB\n")
    return path
