"""Tests for backup runs, retention and restore."""
import gzip
import hashlib
import os
import stat
from datetime import datetime, timedelta, timezone

import pytest

from panelo.core.command import Command
from panelo.core.credentials import CredentialVault
from panelo.core.errors import BackupError
from panelo.models.backup import BackupStrategy, RetentionClass
from panelo.services.backup.scheduler import BackupScheduler, artifact_name
from panelo.services.backup.sources import BackupSource, FilesBackupSource, MySQLBackupSource
from panelo.services.docker.manager import ServiceInstanceManager

NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


class StubSource(BackupSource):
    name = "mysql"
    extension = "sql"

    def __init__(self, targets):
        self._targets = targets

    def targets(self):
        return list(self._targets)

    def dump_command(self, target, strategy):
        return Command.of("dump", target, strategy.value)

    def restore_command(self, target):
        return Command.of("load", target)


@pytest.fixture
def scheduler(tmp_path, runner):
    return BackupScheduler(tmp_path / "backups", runner, retention_days=7, clock=lambda: NOW)


def make_artifact(directory, target, age_days, strategy=BackupStrategy.FULL):
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / artifact_name(target, strategy, NOW - timedelta(days=age_days), "sql")
    with gzip.open(path, "wb") as f:
        f.write(b"-- dump")
    return path


class TestRetention:
    """Test age-based pruning."""

    def test_removes_exactly_artifacts_past_window(self, scheduler):
        directory = scheduler.directory_for("mysql")
        ages = [1, 2, 3, 4, 5, 6, 8, 9, 12, 14]
        paths = {age: make_artifact(directory, "server_panel", age) for age in ages}

        removed = scheduler.prune_older_than(7, "mysql")

        assert sorted(removed) == sorted(paths[a] for a in (8, 9, 12, 14))
        assert len(list(directory.glob("*.gz"))) == 6

    def test_artifact_exactly_at_window_is_kept(self, scheduler):
        path = make_artifact(scheduler.directory_for("mysql"), "server_panel", 7)
        assert scheduler.prune_older_than(7) == []
        assert path.exists()

    def test_unnamed_file_uses_mtime(self, scheduler):
        directory = scheduler.directory_for("files")
        directory.mkdir(parents=True)
        legacy = directory / "legacy-export.tar.gz"
        legacy.write_bytes(b"x")
        old = (NOW - timedelta(days=30)).timestamp()
        os.utime(legacy, (old, old))

        assert scheduler.prune_older_than(7) == [legacy]

    def test_list_records_oldest_first(self, scheduler):
        directory = scheduler.directory_for("mysql")
        make_artifact(directory, "a", 1)
        make_artifact(directory, "b", 5, BackupStrategy.SCHEMA)

        records = scheduler.list_records()

        assert [r.target for r in records] == ["b", "a"]
        assert records[0].strategy is BackupStrategy.SCHEMA
        assert records[0].retention_class is RetentionClass.PARTIAL


class TestRunBackup:
    """Test dumps written by run_backup."""

    def test_writes_compressed_private_artifacts(self, scheduler, runner):
        runner.on("dump", "alpha", stdout="CREATE TABLE t (id int);")
        records = scheduler.run_backup(StubSource(["alpha", "beta"]))

        assert [r.target for r in records] == ["alpha", "beta"]
        record = records[0]
        assert record.path.name == "alpha_full_20261017_120000.sql.gz"
        assert record.path.parent == scheduler.backup_dir / "databases"
        assert stat.S_IMODE(record.path.stat().st_mode) == 0o600
        assert stat.S_IMODE(record.path.parent.stat().st_mode) == 0o700
        with gzip.open(record.path, "rb") as f:
            assert f.read() == b"CREATE TABLE t (id int);"
        assert record.sha256 == hashlib.sha256(record.path.read_bytes()).hexdigest()
        assert record.size == record.path.stat().st_size

    def test_partial_strategy_classification(self, scheduler):
        records = scheduler.run_backup(StubSource(["alpha"]), BackupStrategy.DATA)
        assert records[0].retention_class is RetentionClass.PARTIAL
        assert "_data_" in records[0].path.name

    def test_failed_target_raises_but_keeps_others(self, scheduler, runner):
        runner.on("dump", "beta", returncode=2, stderr="Access denied")
        old = make_artifact(scheduler.directory_for("mysql"), "alpha", 10)

        with pytest.raises(BackupError) as exc:
            scheduler.run_backup(StubSource(["alpha", "beta"]))

        assert "beta" in str(exc.value)
        written = list(scheduler.directory_for("mysql").glob("alpha_full_2026101*"))
        assert len(written) == 1
        assert not old.exists()

    def test_all_failed_skips_pruning(self, scheduler, runner):
        runner.on("dump", returncode=2)
        old = make_artifact(scheduler.directory_for("mysql"), "alpha", 10)

        with pytest.raises(BackupError):
            scheduler.run_backup(StubSource(["alpha"]))

        assert old.exists()

    def test_retention_override(self, scheduler):
        old = make_artifact(scheduler.directory_for("mysql"), "alpha", 3)
        scheduler.run_backup(StubSource(["alpha"]), retention_days=2)
        assert not old.exists()


class TestRestore:
    """Test restoring artifacts."""

    def test_target_taken_from_name(self, scheduler, runner):
        path = make_artifact(scheduler.directory_for("mysql"), "app_blog", 1)

        scheduler.restore(StubSource([]), path)

        assert runner.last("load").argv == ("load", "app_blog")
        assert runner.restored == [b"-- dump"]

    def test_explicit_target(self, scheduler, runner):
        path = make_artifact(scheduler.directory_for("mysql"), "app_blog", 1)
        scheduler.restore(StubSource([]), path, "app_blog_copy")
        assert runner.last("load").argv == ("load", "app_blog_copy")

    def test_missing_artifact(self, scheduler, tmp_path):
        with pytest.raises(BackupError):
            scheduler.restore(StubSource([]), tmp_path / "nope.sql.gz")

    def test_failed_restore(self, scheduler, runner):
        path = make_artifact(scheduler.directory_for("mysql"), "app_blog", 1)
        runner.on("load", returncode=1, stderr="ERROR 1049: Unknown database")
        with pytest.raises(BackupError) as exc:
            scheduler.restore(StubSource([]), path)
        assert "Unknown database" in str(exc.value)


class TestSources:
    """Test dump and restore commands of the built-in sources."""

    @pytest.fixture
    def mysql_source(self, tmp_path, runner):
        vault = CredentialVault(tmp_path / "credentials")
        vault.set("mysql", {'MYSQL_ROOT_PASSWORD': "rootpw"})
        runner.containers["server-panel-mysql"] = {'image': None, 'states': ["running"]}
        return MySQLBackupSource(ServiceInstanceManager(runner), vault)

    def test_mysql_targets_skip_system_schemas(self, mysql_source, runner):
        runner.on("docker", "exec", stdout="information_schema\nmysql\nperformance_schema\nsys\nserver_panel\napp_blog\n")
        assert mysql_source.targets() == ["server_panel", "app_blog"]
        assert "MYSQL_PWD=rootpw" in runner.last("docker").argv

    def test_mysql_targets_fail_loudly(self, mysql_source, runner):
        runner.on("docker", "exec", returncode=1, stderr="Can't connect")
        with pytest.raises(BackupError):
            mysql_source.targets()

    @pytest.mark.parametrize("strategy,flag", [
        (BackupStrategy.SCHEMA, "--no-data"),
        (BackupStrategy.DATA, "--no-create-info"),
        (BackupStrategy.FULL, "--single-transaction"),
    ])
    def test_mysql_dump_flags(self, mysql_source, strategy, flag):
        argv = mysql_source.dump_command("app_blog", strategy).argv
        assert argv[-1] == "app_blog"
        assert flag in argv
        assert "mysqldump" in argv

    def test_files_source(self, tmp_path):
        (tmp_path / "nginx").mkdir()
        source = FilesBackupSource("files", {'nginx': tmp_path / "nginx", 'gone': tmp_path / "gone"})

        assert source.targets() == ["nginx"]
        assert source.dump_command("nginx", BackupStrategy.FULL).argv == (
            "tar", "-C", str(tmp_path), "-cf", "-", "nginx",
        )
        assert source.restore_command("nginx").argv == ("tar", "-C", str(tmp_path), "-xf", "-")
        with pytest.raises(BackupError):
            source.restore_command("unknown")
