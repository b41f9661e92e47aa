"""Tests for cron schedule files."""
import stat

import pytest

from panelo.core.errors import ValidationError
from panelo.core.schedule import CronEntry, CronSchedule, default_entries


@pytest.fixture
def schedule(tmp_path):
    return CronSchedule(tmp_path / "cron.d")


class TestCronEntry:
    def test_render_with_comment(self):
        entry = CronEntry("0 2 * * *", "panelo backup mysql full", comment="Daily")
        assert entry.render() == "# Daily\n0 2 * * * root panelo backup mysql full"

    @pytest.mark.parametrize("schedule", ["0 2 * *", "@daily", "0 2 * * * *"])
    def test_invalid_schedule(self, schedule):
        with pytest.raises(ValidationError):
            CronEntry(schedule, "true")

    def test_multiline_command(self):
        with pytest.raises(ValidationError):
            CronEntry("0 2 * * *", "true\nrm -rf /")


class TestCronSchedule:
    """Test installing schedule files."""

    def test_install_writes_entries(self, schedule):
        assert schedule.install("backup", default_entries()) is True

        path = schedule.path_for("backup")
        assert path.name == "panelo-backup"
        assert stat.S_IMODE(path.stat().st_mode) == 0o644
        assert schedule.entries("backup")[0] == "0 2 * * * root panelo backup mysql full >> /var/log/server-panel/backup.log 2>&1"

    def test_reinstall_does_not_duplicate(self, schedule):
        schedule.install("backup", default_entries())
        assert schedule.install("backup", default_entries()) is False

        lines = schedule.entries("backup")
        assert len(lines) == 4
        assert len(set(lines)) == 4

    def test_changed_entries_replace_file(self, schedule):
        schedule.install("backup", default_entries())
        schedule.install("backup", [CronEntry("30 3 * * *", "panelo backup files")])
        assert schedule.entries("backup") == ["30 3 * * * root panelo backup files"]

    def test_default_entries_cover_partial_and_renewal(self):
        commands = [e.command for e in default_entries(executable="/usr/local/bin/panelo")]
        assert any("/usr/local/bin/panelo backup mysql data" in c for c in commands)
        assert any(c.startswith("/usr/local/bin/panelo ssl renew") for c in commands)

    def test_remove(self, schedule):
        schedule.install("backup", default_entries())
        assert schedule.remove("backup") is True
        assert schedule.remove("backup") is False
        assert schedule.entries("backup") == []

    def test_mock_writes_nothing(self, tmp_path):
        schedule = CronSchedule(tmp_path / "cron.d", mock=True)
        assert schedule.install("backup", default_entries()) is True
        assert not (tmp_path / "cron.d").exists()
