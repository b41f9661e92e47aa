"""End-to-end CLI tests (mock mode and temporary directories)."""
import gzip
from datetime import datetime, timedelta, timezone

import pytest
from typer.testing import CliRunner

from panelo import __version__
from panelo.cli import app
from panelo.cli_support import set_mock
from panelo.models.backup import BackupStrategy
from panelo.services.backup.scheduler import artifact_name

cli = CliRunner()


@pytest.fixture(autouse=True)
def panel_env(tmp_path, monkeypatch):
    """Point every path at a temporary directory."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PANELO_CONFIG", raising=False)
    monkeypatch.delenv("PANELO_MOCK", raising=False)
    monkeypatch.setenv("PANELO_DATA_ROOT", str(tmp_path / "server-panel"))
    monkeypatch.setenv("PANELO_NGINX_DIR", str(tmp_path / "server-panel" / "nginx"))
    monkeypatch.setenv("PANELO_LETSENCRYPT_DIR", str(tmp_path / "letsencrypt"))
    monkeypatch.setenv("PANELO_CRON_DIR", str(tmp_path / "cron.d"))
    monkeypatch.setenv("PANELO_LOG_FILE", str(tmp_path / "panelo.log"))
    monkeypatch.setenv("PANELO_LOCK_FILE", str(tmp_path / "panelo.lock"))
    monkeypatch.setenv("PANELO_MANAGE_OWNERSHIP", "false")
    yield tmp_path
    set_mock(False)


@pytest.fixture
def mock_env(monkeypatch):
    monkeypatch.setenv("PANELO_MOCK", "1")


class TestHelp:
    def test_lists_commands(self):
        result = cli.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("install", "status", "repair", "diagnose", "modules", "site", "ssl", "db",
                        "backup", "backups", "credentials", "schedule"):
            assert command in result.stdout

    def test_version(self):
        result = cli.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_modules_table(self):
        result = cli.invoke(app, ["modules"])
        assert result.exit_code == 0
        assert "mysql" in result.stdout


class TestInstallCommand:
    """Test install in mock mode."""

    def test_mock_install(self, mock_env):
        result = cli.invoke(app, ["install", "mysql", "--domain", "panel.example.com"])
        assert result.exit_code == 0, result.stdout
        assert "All modules installed" in result.stdout

    def test_mock_flag(self):
        result = cli.invoke(app, ["--mock", "install", "docker"])
        assert result.exit_code == 0, result.stdout

    def test_unknown_module(self, mock_env):
        result = cli.invoke(app, ["install", "postgres"])
        assert result.exit_code == 3
        assert "Unknown module" in result.stdout

    def test_status_of_one_module(self, mock_env):
        result = cli.invoke(app, ["status", "mysql"])
        assert result.exit_code == 0
        assert "server-panel-mysql" in result.stdout


class TestSiteCommands:
    def test_add_site(self, mock_env):
        result = cli.invoke(app, ["site", "add", "blog", "blog.example.com", "3005"])
        assert result.exit_code == 0, result.stdout
        assert "Site blog added" in result.stdout

    def test_reserved_name(self, mock_env):
        result = cli.invoke(app, ["site", "add", "panel", "panel.example.com", "3005"])
        assert result.exit_code == 1
        assert "reserved" in result.stdout

    def test_invalid_domain(self, mock_env):
        result = cli.invoke(app, ["site", "add", "blog", "not a domain", "3005"])
        assert result.exit_code == 1

    def test_list_empty(self):
        result = cli.invoke(app, ["site", "list"])
        assert result.exit_code == 0
        assert "No application sites" in result.stdout


class TestSslCommands:
    def test_add(self, mock_env):
        result = cli.invoke(app, ["ssl", "add", "blog.example.com", "ops@example.com"])
        assert result.exit_code == 0, result.stdout
        assert "HTTPS enabled for blog.example.com" in result.stdout

    def test_add_ip_address(self, mock_env):
        result = cli.invoke(app, ["ssl", "add", "203.0.113.10", "ops@example.com"])
        assert result.exit_code == 1
        assert "does not issue certificates" in result.stdout

    def test_list_empty(self):
        result = cli.invoke(app, ["ssl", "list"])
        assert result.exit_code == 0
        assert "No certificates found" in result.stdout

    def test_list(self, panel_env):
        live = panel_env / "letsencrypt" / "live" / "blog.example.com"
        live.mkdir(parents=True)
        (live / "fullchain.pem").write_text("")

        result = cli.invoke(app, ["ssl", "list"])

        assert result.exit_code == 0
        assert "blog.example.com" in result.stdout

    def test_remove_declined(self):
        result = cli.invoke(app, ["ssl", "remove", "blog.example.com"], input="n\n")
        assert result.exit_code == 1

    def test_renew(self, mock_env):
        result = cli.invoke(app, ["ssl", "renew"])
        assert result.exit_code == 0, result.stdout
        assert "No certificate needed renewal" in result.stdout


class TestDbCommands:
    def test_create(self, mock_env):
        result = cli.invoke(app, ["db", "create", "blog", "bloguser"])
        assert result.exit_code == 0, result.stdout
        assert "app_blog" in result.stdout

    def test_invalid_app_name(self, mock_env):
        result = cli.invoke(app, ["db", "create", "Blog!", "bloguser"])
        assert result.exit_code == 1

    def test_remove_declined(self):
        result = cli.invoke(app, ["db", "remove", "blog", "bloguser"], input="n\n")
        assert result.exit_code == 1


class TestBackupCommands:
    def test_unknown_target(self, mock_env):
        result = cli.invoke(app, ["backup", "postgres"])
        assert result.exit_code == 1
        assert "Unknown backup target" in result.stdout

    def test_files_backup(self, panel_env, mock_env):
        (panel_env / "server-panel" / "nginx").mkdir(parents=True)
        result = cli.invoke(app, ["backup", "files"])

        assert result.exit_code == 0, result.stdout
        assert "nginx (full)" in result.stdout
        assert "credentials (full)" not in result.stdout

    def test_list_empty(self):
        result = cli.invoke(app, ["backups", "list"])
        assert result.exit_code == 0
        assert "No backups found" in result.stdout

    def test_prune(self, panel_env):
        directory = panel_env / "server-panel" / "backups" / "databases"
        directory.mkdir(parents=True)
        old = directory / artifact_name(
            "server_panel", BackupStrategy.FULL, datetime.now(timezone.utc) - timedelta(days=10), "sql"
        )
        with gzip.open(old, "wb") as f:
            f.write(b"-- dump")

        result = cli.invoke(app, ["backups", "prune", "--days", "7"])

        assert result.exit_code == 0, result.stdout
        assert "Pruned 1 artifact(s)" in result.stdout
        assert not old.exists()

    def test_restore_outside_backup_dir(self, panel_env):
        stray = panel_env / "dump.sql.gz"
        stray.write_bytes(b"")
        result = cli.invoke(app, ["backups", "restore", str(stray), "--yes"])
        assert result.exit_code == 1


class TestCredentialCommands:
    @pytest.fixture
    def stored(self, panel_env):
        directory = panel_env / "server-panel" / "credentials"
        directory.mkdir(parents=True)
        (directory / "mysql.env").write_text('MYSQL_HOST="127.0.0.1"\nMYSQL_ROOT_PASSWORD="s3cretvalue"\n')

    def test_show_masks_secrets(self, stored):
        result = cli.invoke(app, ["credentials", "show", "mysql"])
        assert result.exit_code == 0, result.stdout
        assert "127.0.0.1" in result.stdout
        assert "s3cretvalue" not in result.stdout

    def test_show_reveal(self, stored):
        result = cli.invoke(app, ["credentials", "show", "mysql", "--reveal"])
        assert "s3cretvalue" in result.stdout

    def test_show_missing(self):
        result = cli.invoke(app, ["credentials", "show", "mysql"])
        assert result.exit_code == 4
        assert "No credentials stored" in result.stdout

    def test_rotate(self, stored, panel_env):
        result = cli.invoke(app, ["credentials", "rotate", "mysql", "MYSQL_ROOT_PASSWORD", "--yes"])

        assert result.exit_code == 0, result.stdout
        content = (panel_env / "server-panel" / "credentials" / "mysql.env").read_text()
        assert "s3cretvalue" not in content
        assert 'MYSQL_HOST="127.0.0.1"' in content


class TestScheduleCommands:
    def test_install_and_show(self, panel_env):
        result = cli.invoke(app, ["schedule", "install"])
        assert result.exit_code == 0, result.stdout
        assert (panel_env / "cron.d" / "panelo-backup").is_file()

        again = cli.invoke(app, ["schedule", "install"])
        assert "already up to date" in again.stdout

        shown = cli.invoke(app, ["schedule", "show"])
        assert "backup mysql full" in shown.stdout
