"""Health gate: bounded readiness polling for service instances.

"The process is up" and "the service inside answers correctly" are separate
questions. A database can sit in the runtime's ``running`` state for a long
time while it initializes, so readiness is only declared once the probe
passes, and a terminated process is reported at once instead of waiting out
the budget.
"""
import time
from typing import Optional

import requests

from panelo.core.logger import get_logger
from panelo.models.health import (
    CallableProbe,
    ExecProbe,
    FailureReason,
    HealthCheckSpec,
    HealthOutcome,
    HttpProbe,
    Probe,
)
from panelo.models.service import InstanceState

logger = get_logger(__name__)


class HealthGate:
    """Poll an instance until ready, crashed, out of budget, or cancelled."""

    def __init__(self, instances, clock=time.monotonic, sleep=time.sleep, http_get=requests.get):
        """Initialize gate.

        Args:
            instances: ServiceInstanceManager used for state, logs and exec
            clock: Monotonic clock (injectable for tests)
            sleep: Sleep function (injectable for tests)
            http_get: HTTP GET callable used by HttpProbe
        """
        self.instances = instances
        self.clock = clock
        self.sleep = sleep
        self.http_get = http_get

    def await_ready(
        self,
        name: str,
        check: HealthCheckSpec,
        deadline: Optional[float] = None,
    ) -> HealthOutcome:
        """Wait for ``name`` to pass its readiness probe.

        Args:
            name: Instance name
            check: Probe, interval and attempt budget
            deadline: Monotonic instant after which polling is cancelled
                (overall install timeout)

        Returns:
            HealthOutcome READY, or FAILED with reason crashed, missing,
            timeout or cancelled
        """
        logger.info(
            f"Waiting for {name} to become ready "
            f"(up to {check.max_attempts} checks every {check.interval:g}s)"
        )
        state = InstanceState.MISSING

        for attempt in range(1, check.max_attempts + 1):
            if deadline is not None and self.clock() >= deadline:
                logger.error(f"✗ Install timeout reached while waiting for {name}")
                return HealthOutcome.failed(
                    FailureReason.CANCELLED, attempt - 1, state, self.instances.logs(name, check.log_tail)
                )

            state = self.instances.state(name)

            if state.terminated:
                logs = self.instances.logs(name, check.log_tail)
                logger.error(f"✗ {name} {state.value} unexpectedly (attempt {attempt}/{check.max_attempts})")
                return HealthOutcome.failed(FailureReason.CRASHED, attempt, state, logs)

            if state is InstanceState.MISSING:
                logger.error(f"✗ {name} disappeared while waiting for readiness")
                return HealthOutcome.failed(FailureReason.MISSING, attempt, state)

            if state is InstanceState.RESTARTING:
                if attempt % check.restart_log_every == 0:
                    logger.warning(f"⚠ {name} is restarting (attempt {attempt}/{check.max_attempts})")
                    recent = self.instances.logs(name, 5)
                    if recent:
                        logger.info(f"Recent output from {name}:\n{recent}")
            elif state is InstanceState.RUNNING:
                if self._probe(name, check.probe):
                    logger.info(f"✓ {name} is ready (attempt {attempt}/{check.max_attempts})")
                    return HealthOutcome.succeeded(attempt)

            if attempt % check.progress_log_every == 0:
                logger.info(
                    f"Still waiting for {name}... (attempt {attempt}/{check.max_attempts}, status: {state.value})"
                )

            if attempt < check.max_attempts:
                self._pause(check.interval, deadline)

        logs = self.instances.logs(name, check.log_tail)
        logger.error(f"✗ {name} not ready after {check.max_attempts} attempts (status: {state.value})")
        return HealthOutcome.failed(FailureReason.TIMEOUT, check.max_attempts, state, logs)

    def check_once(self, name: str, probe: Probe) -> bool:
        """Single readiness evaluation (used by status verbs)."""
        return self.instances.state(name) is InstanceState.RUNNING and self._probe(name, probe)

    def _pause(self, interval: float, deadline: Optional[float]):
        if deadline is not None:
            interval = min(interval, max(0.0, deadline - self.clock()))
        if interval > 0:
            self.sleep(interval)

    def _probe(self, name: str, probe: Probe) -> bool:
        if isinstance(probe, ExecProbe):
            return self.instances.exec(name, probe.argv, timeout=probe.timeout).ok

        if isinstance(probe, HttpProbe):
            if self.instances.mock:
                return True
            try:
                response = self.http_get(probe.url, timeout=probe.timeout, allow_redirects=False)
            except requests.RequestException as e:
                logger.debug(f"{probe.url} not answering yet: {e}")
                return False
            return response.status_code in probe.accepted_statuses

        if isinstance(probe, CallableProbe):
            try:
                return bool(probe.check())
            except Exception as e:
                logger.debug(f"{probe.description} raised: {e}")
                return False

        raise TypeError(f"Unsupported probe type: {type(probe).__name__}")
