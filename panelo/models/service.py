"""Managed service instance models."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple


class RestartPolicy(Enum):
    NO = "no"
    ALWAYS = "always"
    UNLESS_STOPPED = "unless-stopped"
    ON_FAILURE = "on-failure"


class InstanceState(Enum):
    """Process-level state as reported by the container runtime."""
    CREATED = "created"
    RUNNING = "running"
    RESTARTING = "restarting"
    PAUSED = "paused"
    EXITED = "exited"
    DEAD = "dead"
    MISSING = "missing"

    @classmethod
    def parse(cls, raw: str) -> "InstanceState":
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.MISSING

    @property
    def terminated(self) -> bool:
        return self in (InstanceState.EXITED, InstanceState.DEAD)


@dataclass(frozen=True)
class PortMapping:
    """Publish ``container_port`` on ``host_ip:host_port``.

    Internal services default to loopback so they are never reachable from
    outside the host except through the proxy.
    """
    host_port: int
    container_port: int
    host_ip: str = "127.0.0.1"
    protocol: str = "tcp"

    def to_arg(self) -> str:
        binding = f"{self.host_ip}:{self.host_port}:{self.container_port}"
        return binding if self.protocol == "tcp" else f"{binding}/{self.protocol}"


@dataclass(frozen=True)
class VolumeMount:
    source: Path
    target: str
    read_only: bool = False

    def to_arg(self) -> str:
        arg = f"{self.source}:{self.target}"
        return f"{arg}:ro" if self.read_only else arg


@dataclass(frozen=True)
class ServiceInstanceSpec:
    """Declarative description of one managed service instance.

    Attributes:
        name: Instance name, unique per host
        image: Image reference (e.g. ``mysql:8.0``)
        network: Shared network the instance joins
        ports: Published ports
        volumes: Bind mounts
        environment: Environment variables
        restart_policy: Runtime restart policy
        command: Arguments appended after the image
        extra_args: Additional ``docker run`` flags
        data_dirs: Host paths written by the instance; cleared on teardown
            after a failed attempt
    """
    name: str
    image: str
    network: Optional[str] = None
    ports: Tuple[PortMapping, ...] = ()
    volumes: Tuple[VolumeMount, ...] = ()
    environment: Dict[str, str] = field(default_factory=dict)
    restart_policy: RestartPolicy = RestartPolicy.UNLESS_STOPPED
    command: Tuple[str, ...] = ()
    extra_args: Tuple[str, ...] = ()
    data_dirs: Tuple[Path, ...] = ()

    def __post_init__(self):
        if not self.name:
            raise ValueError("Service instance requires a name")
        if not self.image:
            raise ValueError(f"Service instance {self.name} requires an image")


@dataclass(frozen=True)
class InstanceHandle:
    """Reference to an instance the manager has started."""
    name: str
    image: str
    container_id: str = ""


@dataclass(frozen=True)
class InstanceStatus:
    """Point-in-time view of one instance for status/diagnose verbs."""
    name: str
    state: InstanceState
    ready: bool
    detail: str = ""
