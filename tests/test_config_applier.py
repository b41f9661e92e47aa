"""Tests for validate-before-apply configuration writes."""
import os
import stat
from pathlib import Path

import pytest

from panelo.core.command import Command
from panelo.core.config_applier import SCRATCH_PREFIX, ConfigApplier
from panelo.core.errors import TemplateRenderError
from panelo.core.template_loader import TemplateLoader
from panelo.models.config_template import CONFIG_ROOT_TOKEN, ApplyStatus, ConfigSet, ConfigTemplate

OLD_MTIME = 1_600_000_000


@pytest.fixture
def templates(tmp_path):
    directory = tmp_path / "templates"
    directory.mkdir()
    (directory / "site.conf").write_text("server_name ${DOMAIN};\nlisten ${PORT};\n")
    return directory


@pytest.fixture
def applier(runner, templates):
    return ConfigApplier(runner, TemplateLoader(templates))


@pytest.fixture
def live(tmp_path):
    path = tmp_path / "conf.d" / "site.conf"
    path.parent.mkdir()
    path.write_text("server_name old.example.com;\nlisten 80;\n")
    os.utime(path, (OLD_MTIME, OLD_MTIME))
    return path


def template(live, **kwargs):
    return ConfigTemplate(
        template="site.conf",
        live_path=live,
        context={'DOMAIN': "new.example.com", 'PORT': "8080"},
        **kwargs,
    )


def leftovers(directory):
    return [p.name for p in directory.iterdir() if "panelo-" in p.name]


class TestApply:
    """Test rendering and atomic install."""

    def test_writes_rendered_content(self, applier, tmp_path):
        live = tmp_path / "out" / "site.conf"
        result = applier.apply(template(live, mode=0o600))

        assert result.status is ApplyStatus.APPLIED
        assert live.read_text() == "server_name new.example.com;\nlisten 8080;\n"
        assert stat.S_IMODE(live.stat().st_mode) == 0o600

    def test_identical_content_is_unchanged(self, applier, runner, live):
        validator = Command.of("check", "{staged}")
        applier.apply(template(live, validator=validator))
        result = applier.apply(template(live, validator=validator))

        assert result.status is ApplyStatus.UNCHANGED
        assert len(runner.commands("check")) == 1

    def test_validator_sees_staged_file(self, applier, runner, live):
        applier.apply(template(live, validator=Command.of("check", "{staged}")))

        checked = runner.commands("check")[0].argv[1]
        assert checked.endswith(".site.conf.panelo-staged")
        assert leftovers(live.parent) == []

    def test_rejection_keeps_live_file(self, applier, runner, live):
        runner.on("check", returncode=1, stderr="unexpected '}' in site.conf:2")
        result = applier.apply(template(live, validator=Command.of("check", "{staged}")))

        assert result.status is ApplyStatus.REJECTED
        assert not result.ok
        assert result.diagnostics == "unexpected '}' in site.conf:2"
        assert live.read_text() == "server_name old.example.com;\nlisten 80;\n"
        assert live.stat().st_mtime == OLD_MTIME
        assert leftovers(live.parent) == []

    def test_missing_placeholder_writes_nothing(self, applier, tmp_path):
        live = tmp_path / "never.conf"
        with pytest.raises(TemplateRenderError):
            applier.apply(ConfigTemplate("site.conf", live, context={'DOMAIN': "x"}))
        assert not live.exists()

    def test_reload_after_apply(self, applier, runner, live):
        result = applier.apply(template(live, reload=Command.of("reload")))
        assert result.reloaded
        assert len(runner.commands("reload")) == 1

    def test_failed_reload_still_applied(self, applier, runner, live):
        runner.on("reload", returncode=1, stderr="no such container")
        result = applier.apply(template(live, reload=Command.of("reload")))

        assert result.status is ApplyStatus.APPLIED
        assert not result.reloaded
        assert "no such container" in result.diagnostics

    def test_no_reload_when_rejected(self, applier, runner, live):
        runner.on("check", returncode=1)
        applier.apply(template(live, validator=Command.of("check"), reload=Command.of("reload")))
        assert runner.commands("reload") == []


@pytest.fixture
def config_root(tmp_path):
    """nginx-style set: a main file plus an included directory."""
    root = tmp_path / "nginx"
    (root / "conf.d").mkdir(parents=True)
    (root / "nginx.conf").write_text("include conf.d/*.conf;\n")
    (root / "conf.d" / "other.conf").write_text("server_name other.example.com;\n")
    site = root / "conf.d" / "site.conf"
    site.write_text("server_name old.example.com;\nlisten 80;\n")
    os.utime(site, (OLD_MTIME, OLD_MTIME))
    (root / "logs").mkdir()
    return root


def scratch_dirs(root):
    return [p.name for p in root.parent.iterdir() if SCRATCH_PREFIX in p.name]


class TestConfigSet:
    """Test validation of a whole configuration set on a scratch copy."""

    def config_set(self, root):
        return ConfigSet(root, ("nginx.conf", "conf.d"))

    def test_live_file_untouched_while_checking(self, applier, runner, config_root):
        """The live file keeps its old content until the check has passed."""
        site = config_root / "conf.d" / "site.conf"
        seen = {}

        def inspect(command):
            copy = Path(command.argv[1])
            seen['live'] = site.read_text()
            seen['live_mtime'] = site.stat().st_mtime
            seen['copy'] = (copy / "conf.d" / "site.conf").read_text()
            seen['neighbours'] = sorted(p.name for p in copy.iterdir())
            seen['other'] = (copy / "conf.d" / "other.conf").read_text()

        runner.on("check", hook=inspect)
        result = applier.apply(template(
            site, validator=Command.of("check", CONFIG_ROOT_TOKEN), config_set=self.config_set(config_root),
        ))

        assert result.status is ApplyStatus.APPLIED
        assert seen['live'] == "server_name old.example.com;\nlisten 80;\n"
        assert seen['live_mtime'] == OLD_MTIME
        assert "new.example.com" in seen['copy']
        assert seen['neighbours'] == ["conf.d", "nginx.conf"]
        assert seen['other'] == "server_name other.example.com;\n"
        assert "new.example.com" in site.read_text()
        assert scratch_dirs(config_root) == []
        assert leftovers(site.parent) == []

    def test_check_does_not_see_staged_files(self, applier, runner, config_root):
        site = config_root / "conf.d" / "site.conf"
        seen = []
        runner.on("check", hook=lambda c: seen.extend(p.name for p in (Path(c.argv[1]) / "conf.d").iterdir()))

        applier.apply(template(site, validator=Command.of("check", CONFIG_ROOT_TOKEN),
                               config_set=self.config_set(config_root)))

        assert sorted(seen) == ["other.conf", "site.conf"]

    def test_rejection_never_touches_live_set(self, applier, runner, config_root):
        site = config_root / "conf.d" / "site.conf"
        runner.on("check", returncode=1, stderr="nginx: configuration test failed")

        result = applier.apply(template(site, validator=Command.of("check", CONFIG_ROOT_TOKEN),
                                        config_set=self.config_set(config_root)))

        assert result.status is ApplyStatus.REJECTED
        assert result.diagnostics == "nginx: configuration test failed"
        assert site.read_text() == "server_name old.example.com;\nlisten 80;\n"
        assert site.stat().st_mtime == OLD_MTIME
        assert leftovers(site.parent) == []
        assert scratch_dirs(config_root) == []

    def test_rejection_of_new_file_leaves_nothing(self, applier, runner, config_root):
        new = config_root / "conf.d" / "new.conf"
        runner.on("check", returncode=1)

        result = applier.apply(template(new, validator=Command.of("check", CONFIG_ROOT_TOKEN),
                                        config_set=self.config_set(config_root)))

        assert result.status is ApplyStatus.REJECTED
        assert sorted(p.name for p in new.parent.iterdir()) == ["other.conf", "site.conf"]

    def test_staged_token_points_into_copy(self, applier, runner, config_root):
        site = config_root / "conf.d" / "site.conf"
        applier.apply(template(site, validator=Command.of("check", "{staged}"),
                               config_set=self.config_set(config_root)))

        checked = runner.commands("check")[0].argv[1]
        assert checked.endswith("/nginx/conf.d/site.conf")
        assert checked != str(site)


class TestRemove:
    """Test validated removal."""

    def test_remove_deletes_and_reloads(self, applier, runner, live):
        result = applier.remove(live, validator=Command.of("check"), reload=Command.of("reload"))

        assert result.status is ApplyStatus.APPLIED
        assert not live.exists()
        assert result.reloaded

    def test_remove_checks_copy_without_file(self, applier, runner, config_root):
        """The file stays live while the set is checked without it."""
        site = config_root / "conf.d" / "site.conf"
        seen = {}

        def inspect(command):
            seen['live_exists'] = site.exists()
            seen['copy'] = sorted(p.name for p in (Path(command.argv[1]) / "conf.d").iterdir())

        runner.on("check", hook=inspect)
        result = applier.remove(
            site,
            validator=Command.of("check", CONFIG_ROOT_TOKEN),
            config_set=ConfigSet(config_root, ("nginx.conf", "conf.d")),
        )

        assert result.status is ApplyStatus.APPLIED
        assert seen == {'live_exists': True, 'copy': ["other.conf"]}
        assert not site.exists()
        assert scratch_dirs(config_root) == []

    def test_remove_kept_when_rest_is_invalid(self, applier, runner, live):
        runner.on("check", returncode=1, stderr="upstream referenced elsewhere")
        result = applier.remove(live, validator=Command.of("check"))

        assert result.status is ApplyStatus.REJECTED
        assert live.exists()
        assert live.stat().st_mtime == OLD_MTIME

    def test_remove_missing_is_unchanged(self, applier, tmp_path):
        assert applier.remove(tmp_path / "nope.conf").status is ApplyStatus.UNCHANGED


class TestMockApply:
    """Test mock mode."""

    def test_mock_writes_nothing(self, templates, tmp_path):
        from panelo.core.command import CommandRunner

        runner = CommandRunner(mock=True)
        applier = ConfigApplier(runner, TemplateLoader(templates))
        live = tmp_path / "site.conf"

        result = applier.apply(template(live, validator=Command.of("check", "{staged}")))

        assert result.status is ApplyStatus.APPLIED
        assert not live.exists()
        assert runner.last("check") is not None
