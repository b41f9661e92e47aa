"""Tests for dependency-ordered module installs."""
import pytest

from panelo.core.errors import DependencyError, ExitCode, PreflightError
from panelo.core.sequencer import ModuleSequencer, exit_code_for, summary_table
from panelo.models.module import ModuleDescriptor, ModuleOutcome
from panelo.modules.base import PanelModule


def make_module(name, depends_on=(), fail=False, calls=None):
    def step_run(self):
        if calls is not None:
            calls.append((name, self.deadline))
        if fail:
            raise PreflightError(f"{name} broke")

    return type(f"{name.title()}Module", (PanelModule,), {
        'descriptor': ModuleDescriptor(name=name, steps=("run",), depends_on=tuple(depends_on)),
        'step_run': step_run,
    })


class TestResolve:
    """Test install order resolution."""

    def test_builtin_order(self, services):
        assert ModuleSequencer(services).resolve() == [
            "docker", "mysql", "nginx", "ssl", "filemanager", "monitoring", "backup",
        ]

    def test_pulls_in_dependencies(self, services):
        assert ModuleSequencer(services).resolve(["backup"]) == ["docker", "mysql", "backup"]

    def test_dependencies_before_dependents(self, services):
        order = ModuleSequencer(services).resolve(["filemanager", "mysql"])
        assert order.index("nginx") < order.index("filemanager")
        assert order.index("docker") == 0
        assert order.count("docker") == 1

    def test_unknown_module(self, services):
        with pytest.raises(DependencyError) as exc:
            ModuleSequencer(services).resolve(["postgres"])
        assert exc.value.exit_code == ExitCode.DEPENDENCY

    def test_unknown_dependency(self, services):
        registry = {'app': make_module("app", depends_on=("redis",))}
        with pytest.raises(DependencyError) as exc:
            ModuleSequencer(services, registry).resolve()
        assert "depends on unknown module redis" in str(exc.value)

    def test_cycle(self, services):
        registry = {
            'a': make_module("a", depends_on=("b",)),
            'b': make_module("b", depends_on=("a",)),
        }
        with pytest.raises(DependencyError) as exc:
            ModuleSequencer(services, registry).resolve(["a"])
        assert "a -> b -> a" in str(exc.value)


class TestInstall:
    """Test install runs, failures and skips."""

    def test_dependents_of_failed_module_are_skipped(self, services):
        calls = []
        registry = {
            'base': make_module("base", fail=True, calls=calls),
            'db': make_module("db", depends_on=("base",), calls=calls),
            'app': make_module("app", depends_on=("db",), calls=calls),
            'other': make_module("other", calls=calls),
        }

        reports = ModuleSequencer(services, registry).install()
        outcomes = {r.name: r.outcome for r in reports}

        assert outcomes == {
            'base': ModuleOutcome.FAILED,
            'db': ModuleOutcome.SKIPPED,
            'app': ModuleOutcome.SKIPPED,
            'other': ModuleOutcome.OK,
        }
        assert [name for name, _ in calls] == ["base", "other"]
        assert exit_code_for(reports) == ExitCode.DEPENDENCY

    def test_one_deadline_for_the_run(self, services, clock):
        calls = []
        registry = {
            'a': make_module("a", calls=calls),
            'b': make_module("b", depends_on=("a",), calls=calls),
        }

        ModuleSequencer(services, registry, clock=clock).install()

        expected = clock() + services.ctx.install_timeout
        assert [deadline for _, deadline in calls] == [expected, expected]

    def test_all_ok_exit_code(self, services):
        reports = ModuleSequencer(services, {'a': make_module("a")}).install()
        assert exit_code_for(reports) == 0

    def test_summary_table_rows(self, services):
        registry = {'a': make_module("a", fail=True), 'b': make_module("b", depends_on=("a",))}
        reports = ModuleSequencer(services, registry).install()
        assert summary_table(reports).row_count == 2


class TestPanelModule:
    """Test the module base class contract."""

    def test_failing_step_stops_module(self, services):
        ran = []

        class TwoSteps(PanelModule):
            descriptor = ModuleDescriptor(name="two", steps=("one", "two"))

            def step_one(self):
                raise PreflightError("no docker")

            def step_two(self):
                ran.append("two")

        report = TwoSteps(services).install()

        assert report.failed_step == "one"
        assert report.error == "no docker"
        assert report.exit_code == ExitCode.DEPENDENCY
        assert ran == []

    def test_step_without_method(self):
        with pytest.raises(TypeError):
            type("Broken", (PanelModule,), {'descriptor': ModuleDescriptor(name="broken", steps=("missing",))})
