"""Host checks run before any mutating step."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from panelo.core.command import CommandRunner, docker
from panelo.core.errors import PreflightError
from panelo.core.logger import get_logger

logger = get_logger(__name__)

SUPPORTED_FAMILIES = {"debian", "ubuntu", "rhel", "centos", "fedora", "rocky", "almalinux"}


@dataclass
class HostInfo:
    os_id: str = "unknown"
    os_family: str = "unknown"
    pretty_name: str = "Unknown"
    is_root: bool = False
    missing: List[str] = field(default_factory=list)


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse ``/etc/os-release`` KEY=value lines."""
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key] = value.strip().strip('"').strip("'")
    return values


class Preflight:
    """Check OS family, privileges and required binaries."""

    def __init__(
        self,
        runner: CommandRunner,
        os_release: Path = Path("/etc/os-release"),
        geteuid=os.geteuid,
    ):
        self.runner = runner
        self.os_release = Path(os_release)
        self.geteuid = geteuid

    def inspect(self, binaries: Iterable[str] = ()) -> HostInfo:
        info = HostInfo(is_root=self.geteuid() == 0)

        if self.os_release.is_file():
            release = parse_os_release(self.os_release.read_text())
            info.os_id = release.get("ID", "unknown").lower()
            like = release.get("ID_LIKE", "").lower().split()
            info.os_family = next(
                (f for f in [info.os_id] + like if f in SUPPORTED_FAMILIES),
                info.os_id,
            )
            info.pretty_name = release.get("PRETTY_NAME", info.os_id)

        info.missing = [b for b in binaries if self.runner.which(b) is None]
        return info

    def check(self, binaries: Iterable[str] = ("docker",), require_root: bool = True) -> HostInfo:
        """Raise PreflightError unless the host can be provisioned.

        Mock runs only log what would have failed.
        """
        info = self.inspect(binaries)
        problems = []

        if info.os_family not in SUPPORTED_FAMILIES:
            problems.append(f"unsupported operating system: {info.pretty_name}")
        if require_root and not info.is_root:
            problems.append("must be run as root")
        if info.missing:
            problems.append(f"missing required commands: {', '.join(info.missing)}")

        if problems:
            if self.runner.mock:
                for problem in problems:
                    logger.warning(f"MOCK: Ignoring preflight failure: {problem}")
                return info
            raise PreflightError("; ".join(problems))

        logger.info(f"✓ Host OK: {info.pretty_name}")
        return info

    def docker_daemon(self) -> Optional[str]:
        """Server version of the Docker daemon, or None if it doesn't answer."""
        result = self.runner.run(docker("info", "--format", "{{.ServerVersion}}", timeout=30))
        if not result.ok:
            return None
        return result.stdout.strip() or "unknown"
