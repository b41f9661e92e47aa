"""Ordered fallback between alternate implementations of one service."""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from panelo.core.errors import CommandError, ExhaustedError
from panelo.core.logger import get_logger
from panelo.models.health import FailureReason, HealthCheckSpec, HealthOutcome
from panelo.models.service import InstanceHandle, ServiceInstanceSpec

logger = get_logger(__name__)


@dataclass
class FallbackResult:
    """The candidate that became ready, and what was tried before it."""
    handle: InstanceHandle
    spec: ServiceInstanceSpec
    outcome: HealthOutcome
    attempted: List[str] = field(default_factory=list)

    @property
    def fell_back(self) -> bool:
        return len(self.attempted) > 1


class FallbackSelector:
    """Deploy candidates strictly in order until one passes its health gate.

    A failed candidate is fully torn down (instance stopped and removed, data
    directories cleared) before the next one starts, so an alternate
    implementation never inherits files half-written by an incompatible one.
    """

    def __init__(self, instances, health, reconciler):
        """Initialize selector.

        Args:
            instances: ServiceInstanceManager
            health: HealthGate
            reconciler: ResourceReconciler used to clear data directories
        """
        self.instances = instances
        self.health = health
        self.reconciler = reconciler

    def deploy_with_fallback(
        self,
        candidates: Sequence[ServiceInstanceSpec],
        check: HealthCheckSpec,
        deadline: Optional[float] = None,
    ) -> FallbackResult:
        """Deploy the first candidate that becomes ready.

        Raises:
            ExhaustedError: Every candidate failed; carries the last
                candidate's output. The last candidate is left in place for
                diagnosis.
        """
        if not candidates:
            raise ValueError("deploy_with_fallback needs at least one candidate")

        attempted: List[str] = []
        last_logs = ""

        for index, spec in enumerate(candidates):
            if index > 0:
                previous = candidates[index - 1]
                logger.warning(f"⚠ {previous.image} did not become ready, falling back to {spec.image}")
                self.teardown(previous)

            attempted.append(spec.image)

            try:
                handle = self.instances.deploy(spec)
            except CommandError as e:
                logger.error(f"✗ Could not start {spec.name} from {spec.image}")
                last_logs = str(e)
                continue

            outcome = self.health.await_ready(spec.name, check, deadline)
            if outcome.ready:
                if index > 0:
                    logger.info(f"✓ {spec.image} started successfully as alternative")
                return FallbackResult(handle, spec, outcome, attempted)

            last_logs = outcome.logs
            if outcome.reason is FailureReason.CANCELLED:
                break

        name = candidates[0].name
        raise ExhaustedError(
            f"{name}: no candidate became ready (tried {', '.join(attempted)})",
            logs=last_logs,
        )

    def teardown(self, spec: ServiceInstanceSpec):
        """Stop, remove and wipe the state of a failed candidate."""
        self.instances.remove(spec.name)
        for data_dir in spec.data_dirs:
            self.reconciler.clear(data_dir)
        logger.info(f"Tore down failed candidate {spec.image}")
