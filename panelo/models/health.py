"""Readiness check models."""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple, Union

from panelo.models.service import InstanceState


@dataclass(frozen=True)
class ExecProbe:
    """Ready when ``argv`` exits 0 inside the instance within ``timeout`` seconds."""
    argv: Tuple[str, ...]
    timeout: float = 10.0


@dataclass(frozen=True)
class HttpProbe:
    """Ready when ``url`` answers with one of ``accepted_statuses``."""
    url: str
    accepted_statuses: Tuple[int, ...] = (200,)
    timeout: float = 3.0


@dataclass(frozen=True)
class CallableProbe:
    """Ready when ``check()`` returns True."""
    check: Callable[[], bool]
    description: str = "custom check"


Probe = Union[ExecProbe, HttpProbe, CallableProbe]


@dataclass(frozen=True)
class HealthCheckSpec:
    """How to decide a running instance is actually ready.

    Attributes:
        probe: Readiness predicate
        interval: Seconds between polls
        max_attempts: Poll budget; the gate never evaluates the probe more often
        restart_log_every: While the instance is restarting, log every Nth attempt
        progress_log_every: While running-but-not-ready, log every Nth attempt
        log_tail: Lines of instance output kept on failure
    """
    probe: Probe
    interval: float = 2.0
    max_attempts: int = 60
    restart_log_every: int = 10
    progress_log_every: int = 15
    log_tail: int = 20

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")
        if self.restart_log_every < 1 or self.progress_log_every < 1:
            raise ValueError("log intervals must be at least 1")


class HealthStatus(Enum):
    READY = "ready"
    FAILED = "failed"


class FailureReason(Enum):
    CRASHED = "crashed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    MISSING = "missing"


@dataclass(frozen=True)
class HealthOutcome:
    status: HealthStatus
    attempts: int
    last_state: InstanceState
    reason: Optional[FailureReason] = None
    logs: str = ""

    @property
    def ready(self) -> bool:
        return self.status is HealthStatus.READY

    @classmethod
    def succeeded(cls, attempts: int) -> "HealthOutcome":
        return cls(HealthStatus.READY, attempts, InstanceState.RUNNING)

    @classmethod
    def failed(cls, reason: FailureReason, attempts: int, state: InstanceState, logs: str = "") -> "HealthOutcome":
        return cls(HealthStatus.FAILED, attempts, state, reason, logs)
