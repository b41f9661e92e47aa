"""Module sequencer: dependency order, install deadline, per-module reports."""
import time
from typing import Dict, Iterable, List, Optional, Set, Type

from rich.table import Table

from panelo.core.errors import DependencyError
from panelo.core.logger import get_logger
from panelo.models.module import ModuleOutcome, ModuleReport
from panelo.modules import REGISTRY

logger = get_logger(__name__)

_VISITING = 1
_DONE = 2


class ModuleSequencer:
    """Install modules after their dependencies, never after a failed one.

    A module whose dependency failed (or was itself skipped) is reported as
    skipped; modules on unrelated branches still run. One deadline, derived
    from the context's install timeout, bounds every health wait of the run.
    """

    def __init__(self, services, registry: Optional[Dict[str, Type]] = None, clock=time.monotonic):
        """Initialize sequencer.

        Args:
            services: ModuleServices shared by every module of the run
            registry: Module name -> PanelModule subclass (default: all modules)
            clock: Monotonic clock used for the install deadline
        """
        self.services = services
        self.registry = REGISTRY if registry is None else registry
        self.clock = clock

    def module(self, name: str):
        """Instantiate a registered module.

        Raises:
            DependencyError: If no module has that name
        """
        if name not in self.registry:
            raise DependencyError(f"Unknown module: {name} (available: {', '.join(self.registry)})")
        return self.registry[name](self.services)

    def resolve(self, names: Optional[Iterable[str]] = None) -> List[str]:
        """Topological install order for ``names`` and everything they depend on.

        Raises:
            DependencyError: On an unknown module or a dependency cycle
        """
        requested = list(names) if names else list(self.registry)
        order: List[str] = []
        marks: Dict[str, int] = {}

        def visit(name: str, chain: List[str]):
            if name not in self.registry:
                if chain:
                    raise DependencyError(f"Module {chain[-1]} depends on unknown module {name}")
                raise DependencyError(f"Unknown module: {name} (available: {', '.join(self.registry)})")

            mark = marks.get(name)
            if mark == _DONE:
                return
            if mark == _VISITING:
                raise DependencyError(f"Dependency cycle: {' -> '.join(chain + [name])}")

            marks[name] = _VISITING
            for dependency in self.registry[name].descriptor.depends_on:
                visit(dependency, chain + [name])
            marks[name] = _DONE
            order.append(name)

        for name in requested:
            visit(name, [])
        return order

    def install(self, names: Optional[Iterable[str]] = None) -> List[ModuleReport]:
        """Install modules in dependency order.

        Returns:
            One ModuleReport per module in the order considered
        """
        order = self.resolve(names)
        deadline = self.clock() + self.services.ctx.install_timeout
        logger.info(f"Install order: {' -> '.join(order)}")

        reports: List[ModuleReport] = []
        unhealthy: Set[str] = set()

        for name in order:
            blocked = [d for d in self.registry[name].descriptor.depends_on if d in unhealthy]
            if blocked:
                logger.warning(f"⚠ Skipping {name}: dependency {', '.join(blocked)} did not install")
                reports.append(ModuleReport(
                    name,
                    outcome=ModuleOutcome.SKIPPED,
                    error=f"dependency failed: {', '.join(blocked)}",
                ))
                unhealthy.add(name)
                continue

            report = self.module(name).install(deadline)
            reports.append(report)
            if not report.ok:
                unhealthy.add(name)

        return reports


def exit_code_for(reports: List[ModuleReport]) -> int:
    """Exit code of the first failed module (0 when everything installed)."""
    for report in reports:
        if report.outcome is ModuleOutcome.FAILED:
            return report.exit_code
    return 0


def summary_table(reports: List[ModuleReport]) -> Table:
    """Rich table with one row per module report."""
    table = Table(title="Install summary", show_header=True, header_style="bold cyan")
    table.add_column("Module", style="bold")
    table.add_column("Result")
    table.add_column("Steps", style="dim")
    table.add_column("Detail")

    styles = {
        ModuleOutcome.OK: "[green]✓ ok[/green]",
        ModuleOutcome.FAILED: "[red]✗ failed[/red]",
        ModuleOutcome.SKIPPED: "[yellow]⚠ skipped[/yellow]",
    }
    for report in reports:
        detail = report.error.splitlines()[0] if report.error else ""
        if report.failed_step:
            detail = f"{report.failed_step}: {detail}"
        table.add_row(report.name, styles[report.outcome], str(len(report.completed_steps)), detail)
    return table
