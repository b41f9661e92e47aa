"""Base class and shared services for installable modules."""
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

from panelo.core.command import CommandRunner
from panelo.core.config import ProvisioningContext
from panelo.core.config_applier import ConfigApplier
from panelo.core.credentials import CredentialVault
from panelo.core.errors import PaneloError, ValidationError
from panelo.core.health import HealthGate
from panelo.core.logger import get_logger
from panelo.core.preflight import Preflight
from panelo.core.reconciler import ResourceReconciler
from panelo.core.schedule import CronSchedule
from panelo.core.template_loader import TemplateLoader
from panelo.models.backup import BackupRecord
from panelo.models.config_template import ApplyResult, ConfigTemplate
from panelo.models.health import HealthCheckSpec, Probe
from panelo.models.module import ModuleDescriptor, ModuleOutcome, ModuleReport, Verb
from panelo.models.reconcile import ReconciliationTarget
from panelo.models.service import InstanceStatus
from panelo.services.backup.scheduler import BackupScheduler
from panelo.services.docker.fallback import FallbackSelector
from panelo.services.docker.manager import ServiceInstanceManager

logger = get_logger(__name__)


@dataclass
class ModuleServices:
    """The components a module composes, built once per run."""

    ctx: ProvisioningContext
    runner: CommandRunner
    reconciler: ResourceReconciler
    vault: CredentialVault
    instances: ServiceInstanceManager
    health: HealthGate
    fallback: FallbackSelector
    applier: ConfigApplier
    schedule: CronSchedule
    backups: BackupScheduler
    preflight: Preflight

    @classmethod
    def build(
        cls,
        ctx: ProvisioningContext,
        runner: Optional[CommandRunner] = None,
        clock=time.monotonic,
        sleep=time.sleep,
        http_get=requests.get,
    ) -> "ModuleServices":
        """Wire every component from one provisioning context."""
        runner = runner or CommandRunner(mock=ctx.mock)
        reconciler = ResourceReconciler(mock=ctx.mock, manage_ownership=ctx.manage_ownership)
        instances = ServiceInstanceManager(runner, network=ctx.network, sleep=sleep)
        health = HealthGate(instances, clock=clock, sleep=sleep, http_get=http_get)
        return cls(
            ctx=ctx,
            runner=runner,
            reconciler=reconciler,
            vault=CredentialVault(ctx.credentials_dir, length=ctx.password_length, mock=ctx.mock),
            instances=instances,
            health=health,
            fallback=FallbackSelector(instances, health, reconciler),
            applier=ConfigApplier(runner, TemplateLoader(ctx.templates_dir)),
            schedule=CronSchedule(ctx.cron_dir, mock=ctx.mock),
            backups=BackupScheduler(ctx.backup_dir, runner, retention_days=ctx.backup_retention_days),
            preflight=Preflight(runner),
        )


class PanelModule:
    """An installable unit (database, proxy, file browser...).

    Subclasses declare a ``descriptor`` and implement one ``step_<name>``
    method per install step. Steps run strictly in order; the first one that
    raises a PaneloError fails the module and nothing after it runs. Earlier
    steps are not undone, since each is idempotent and the next run resumes.
    """

    descriptor: ModuleDescriptor

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        descriptor = cls.__dict__.get('descriptor')
        if descriptor is None:
            return
        missing = [s for s in descriptor.steps if not callable(getattr(cls, f"step_{s}", None))]
        if missing:
            raise TypeError(f"{cls.__name__} declares steps without methods: {', '.join(missing)}")

    def __init__(self, services: ModuleServices):
        self.services = services
        self.ctx = services.ctx
        self.runner = services.runner
        self.reconciler = services.reconciler
        self.vault = services.vault
        self.instances = services.instances
        self.health = services.health
        self.fallback = services.fallback
        self.applier = services.applier
        self.deadline: Optional[float] = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    # ==================== Verbs ====================

    def install(self, deadline: Optional[float] = None) -> ModuleReport:
        """Run every install step in order.

        Args:
            deadline: Monotonic instant after which health polling is cancelled

        Returns:
            ModuleReport (OK, or FAILED with the failing step and error)
        """
        self.deadline = deadline
        report = ModuleReport(self.name)
        logger.info(f"Installing {self.name}")

        for step in self.descriptor.steps:
            logger.debug(f"[{self.name}] {step}")
            try:
                getattr(self, f"step_{step}")()
            except PaneloError as e:
                report.outcome = ModuleOutcome.FAILED
                report.failed_step = step
                report.error = str(e)
                report.logs = getattr(e, 'logs', '')
                report.exit_code = int(e.exit_code)
                logger.error(f"✗ {self.name}: step '{step}' failed: {e}")
                return report
            report.completed_steps.append(step)

        logger.info(f"✓ {self.name} installed")
        return report

    def status(self) -> List[InstanceStatus]:
        """Current state and readiness of every instance the module runs."""
        statuses = []
        for name, probe in self.readiness_probes().items():
            state = self.instances.state(name)
            ready = self.health.check_once(name, probe)
            statuses.append(InstanceStatus(name, state, ready))
        return statuses

    def backup(self, target: Optional[str] = None, mode: Optional[str] = None) -> List[BackupRecord]:
        raise ValidationError(f"Module {self.name} has nothing to back up")

    def repair(self, deadline: Optional[float] = None) -> ModuleReport:
        """Remove the module's instances and re-run the install steps."""
        logger.info(f"Repairing {self.name}")
        for name in self.readiness_probes():
            self.instances.remove(name)
        return self.install(deadline)

    def diagnose(self, tail: int = 20) -> Dict[str, Dict[str, str]]:
        """State, readiness and recent output per instance."""
        report = {}
        for status in self.status():
            report[status.name] = {
                'state': status.state.value,
                'ready': 'yes' if status.ready else 'no',
                'logs': self.instances.logs(status.name, tail),
            }
        return report

    def supports(self, verb: Verb) -> bool:
        return self.descriptor.supports(verb)

    # ==================== Helpers for subclasses ====================

    def readiness_probes(self) -> Dict[str, Probe]:
        """Instance name -> readiness probe, for status/repair/diagnose."""
        return {}

    def health_check(self, probe: Probe) -> HealthCheckSpec:
        return HealthCheckSpec(
            probe,
            interval=self.ctx.health_interval,
            max_attempts=self.ctx.health_max_attempts,
        )

    def ensure_dirs(self, targets: List[ReconciliationTarget]):
        self.reconciler.ensure_all(targets)

    def apply_config(self, tmpl: ConfigTemplate) -> ApplyResult:
        """Apply a configuration template; rejection fails the step."""
        result = self.applier.apply(tmpl)
        if not result.ok:
            raise ValidationError(f"{tmpl.live_path} rejected by validator:\n{result.diagnostics}")
        return result
