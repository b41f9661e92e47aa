"""MySQL module: the panel's database, with MariaDB as fallback engine."""
import re
from pathlib import Path
from typing import Dict, List, Optional

from panelo.core.command import docker
from panelo.core.credentials import CredentialSet
from panelo.core.errors import BackupError, CommandError, ValidationError
from panelo.core.logger import get_logger
from panelo.core.retry import retry
from panelo.models.backup import BackupRecord, BackupStrategy
from panelo.models.config_template import ConfigTemplate
from panelo.models.health import ExecProbe, Probe
from panelo.models.module import ModuleDescriptor, Verb
from panelo.models.reconcile import ReconciliationTarget
from panelo.models.service import PortMapping, ServiceInstanceSpec, VolumeMount
from panelo.modules.base import PanelModule
from panelo.services.backup.sources import MySQLBackupSource

logger = get_logger(__name__)

CONTAINER = "server-panel-mysql"
PRIMARY_IMAGE = "mysql:8.0"
FALLBACK_IMAGE = "mariadb:10.11"
PORT = 3306
MYSQL_UID = "999"

PANEL_DB = "server_panel"
PANEL_USER = "panel_user"
PANEL_DATABASES = ("server_panel", "server_panel_apps", "server_panel_metrics")

SECRET_KEYS = ("MYSQL_ROOT_PASSWORD", "MYSQL_PANEL_PASSWORD")
DATA_MARKER = "mysql"

PING = ("mysqladmin", "ping", "-h", "localhost", "--silent")

# Seconds one batch of administrative statements may run
SQL_TIMEOUT = 120

IDENTIFIER = re.compile(r'^[a-z0-9_]{1,32}$')

# (min available MB, innodb buffer pool, max connections, thread cache)
TUNING_TIERS = (
    (4096, "1G", 400, 256),
    (2048, "512M", 300, 256),
    (1024, "256M", 200, 128),
    (0, "128M", 100, 64),
)


def available_memory_mb(meminfo: Path = Path("/proc/meminfo")) -> int:
    """MemAvailable in MB (0 if it can't be read)."""
    try:
        for line in meminfo.read_text().splitlines():
            if line.startswith("MemAvailable:"):
                return int(line.split()[1]) // 1024
    except (OSError, ValueError, IndexError):
        pass
    return 0


def tuning_for(available_mb: int) -> Dict[str, str]:
    """my.cnf sizing for the memory the server can actually spare."""
    budget = int(available_mb * 0.7)
    for threshold, buffer_pool, connections, thread_cache in TUNING_TIERS:
        if budget > threshold:
            break
    return {
        'INNODB_BUFFER_POOL_SIZE': buffer_pool,
        'MAX_CONNECTIONS': str(connections),
        'THREAD_CACHE_SIZE': str(thread_cache),
    }


class MySQLModule(PanelModule):
    """Panel database on MySQL 8.0, falling back to MariaDB 10.11."""

    descriptor = ModuleDescriptor(
        name="mysql",
        steps=("directories", "credentials", "config", "deploy", "databases", "connection"),
        depends_on=("docker",),
        verbs=(Verb.INSTALL, Verb.STATUS, Verb.BACKUP, Verb.REPAIR),
        extra_verbs=("db create", "db remove"),
        description="MySQL 8.0 (MariaDB 10.11 fallback) for panel and application databases",
    )

    meminfo = Path("/proc/meminfo")

    @property
    def root(self) -> Path:
        return self.ctx.service_dir("mysql")

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def config_file(self) -> Path:
        return self.root / "config" / "my.cnf"

    @property
    def connection_file(self) -> Path:
        return self.root / "connection.env"

    def directory_targets(self) -> List[ReconciliationTarget]:
        return [
            ReconciliationTarget(self.root, mode=0o700),
            ReconciliationTarget(self.data_dir, owner=MYSQL_UID, group=MYSQL_UID, mode=0o755, marker=DATA_MARKER),
            ReconciliationTarget(self.root / "config", mode=0o755),
            ReconciliationTarget(self.root / "backups", mode=0o700),
            ReconciliationTarget(self.root / "logs", owner=MYSQL_UID, group=MYSQL_UID, mode=0o755),
        ]

    # ==================== Install steps ====================

    def step_directories(self):
        self.ensure_dirs(self.directory_targets())

    def step_credentials(self):
        self.vault.get_or_create("mysql", SECRET_KEYS)
        self.vault.set("mysql", {
            'MYSQL_HOST': "127.0.0.1",
            'MYSQL_PORT': str(PORT),
            'MYSQL_PANEL_DB': PANEL_DB,
            'MYSQL_PANEL_USER': PANEL_USER,
            'MYSQL_CONTAINER_NAME': CONTAINER,
        })

    def step_config(self):
        available = available_memory_mb(self.meminfo)
        tuning = tuning_for(available)
        logger.info(f"Sizing MySQL for {available}MB available memory "
                    f"(buffer pool {tuning['INNODB_BUFFER_POOL_SIZE']})")
        self.apply_config(ConfigTemplate(
            template="my.cnf",
            live_path=self.config_file,
            context=tuning,
            validator=docker(
                "run", "--rm", "--entrypoint", "mysqld",
                "-v", "{staged}:/etc/mysql/conf.d/my.cnf:ro",
                PRIMARY_IMAGE, "--validate-config",
            ),
        ))

    def step_deploy(self):
        creds = self.vault.load("mysql")
        result = self.fallback.deploy_with_fallback(
            self.candidates(creds),
            self.health_check(ExecProbe(PING)),
            self.deadline,
        )
        self.vault.set("mysql", {'MYSQL_IMAGE': result.spec.image})

    def step_databases(self):
        creds = self.vault.load("mysql")
        password = creds["MYSQL_PANEL_PASSWORD"]
        statements = [f"CREATE DATABASE IF NOT EXISTS `{db}`;" for db in PANEL_DATABASES]
        statements.append(f"CREATE USER IF NOT EXISTS '{PANEL_USER}'@'%' IDENTIFIED BY '{password}';")
        statements.extend(f"GRANT ALL PRIVILEGES ON `{db}`.* TO '{PANEL_USER}'@'%';" for db in PANEL_DATABASES)
        statements.append("FLUSH PRIVILEGES;")
        self.run_sql("\n".join(statements))
        logger.info(f"✓ Panel databases ready: {', '.join(PANEL_DATABASES)}")

    def step_connection(self):
        creds = self.vault.load("mysql")
        self.apply_config(ConfigTemplate(
            template="connection.env",
            live_path=self.connection_file,
            context={
                'HOST': creds.get("MYSQL_HOST", "127.0.0.1"),
                'PORT': creds.get("MYSQL_PORT", str(PORT)),
                'DATABASE': creds.get("MYSQL_PANEL_DB", PANEL_DB),
                'USERNAME': creds.get("MYSQL_PANEL_USER", PANEL_USER),
                'PASSWORD': creds["MYSQL_PANEL_PASSWORD"],
            },
            mode=0o600,
        ))

    # ==================== Instances ====================

    def candidates(self, creds: CredentialSet) -> List[ServiceInstanceSpec]:
        """Engines to try, in order.

        A data directory that already holds an initialized store is never
        handed to a different engine or wiped: only the engine recorded as
        having created it is tried, and a failure leaves the data alone.
        """
        initialized = not self.ctx.mock and (self.data_dir / DATA_MARKER).is_dir()
        if initialized:
            image = creds.get("MYSQL_IMAGE", PRIMARY_IMAGE)
            return [self.instance_spec(image, creds, wipe_on_failure=False)]
        return [self.instance_spec(PRIMARY_IMAGE, creds), self.instance_spec(FALLBACK_IMAGE, creds)]

    def instance_spec(self, image: str, creds: CredentialSet, wipe_on_failure: bool = True) -> ServiceInstanceSpec:
        command = ("--character-set-server=utf8mb4", "--collation-server=utf8mb4_unicode_ci")
        if image.startswith("mysql:"):
            command += ("--skip-mysqlx", "--disable-log-bin")

        return ServiceInstanceSpec(
            name=CONTAINER,
            image=image,
            network=self.ctx.network,
            ports=(PortMapping(PORT, 3306),),
            volumes=(
                VolumeMount(self.data_dir, "/var/lib/mysql"),
                VolumeMount(self.config_file.parent, "/etc/mysql/conf.d", read_only=True),
                VolumeMount(self.root / "logs", "/var/log/mysql"),
            ),
            environment={
                'MYSQL_ROOT_PASSWORD': creds["MYSQL_ROOT_PASSWORD"],
                'MYSQL_DATABASE': PANEL_DB,
                'MYSQL_USER': PANEL_USER,
                'MYSQL_PASSWORD': creds["MYSQL_PANEL_PASSWORD"],
            },
            command=command,
            extra_args=("--security-opt", "apparmor=unconfined"),
            data_dirs=(self.data_dir,) if wipe_on_failure else (),
        )

    def readiness_probes(self) -> Dict[str, Probe]:
        return {CONTAINER: ExecProbe(PING)}

    def run_sql(self, sql: str, attempts: int = 5):
        """Run statements as root; retried while the server finishes initializing.

        Raises:
            CommandError: If the statements still fail after the last attempt
        """
        password = self.vault.load("mysql")["MYSQL_ROOT_PASSWORD"]

        @retry(max_attempts=attempts, delay=2.0, exceptions=(CommandError,), sleep=self.instances.sleep,
               label=f"SQL on {CONTAINER}")
        def _run():
            return self.instances.exec(
                CONTAINER, ["mysql", "-u", "root"], input=sql, check=True, env={'MYSQL_PWD': password},
                timeout=SQL_TIMEOUT,
            )

        return _run()

    # ==================== Backup ====================

    def backup_source(self) -> MySQLBackupSource:
        return MySQLBackupSource(self.instances, self.vault, CONTAINER)

    def backup(self, target: Optional[str] = None, mode: Optional[str] = None) -> List[BackupRecord]:
        """Dump one database (or all non-system databases) with ``mode``."""
        try:
            strategy = BackupStrategy(mode or "full")
        except ValueError:
            raise ValidationError(f"Unknown backup mode: {mode} (schema, data or full)")

        return self.services.backups.run_backup(
            self.backup_source(),
            strategy,
            targets=[target] if target else None,
        )

    # ==================== Application databases ====================

    def create_database(self, app: str, user: str) -> CredentialSet:
        """Create ``app_<app>`` and a user owning it; re-running is a no-op.

        Returns:
            CredentialSet (service ``app-<app>``) with DB_NAME, DB_USER, DB_PASSWORD
        """
        database = self._app_database(app, user)
        service = f"app-{app.replace('_', '-')}"
        creds = self.vault.get_or_create(service, ["DB_PASSWORD"])
        creds = self.vault.set(service, {'DB_NAME': database, 'DB_USER': user})

        self.run_sql("\n".join([
            f"CREATE DATABASE IF NOT EXISTS `{database}`;",
            f"CREATE USER IF NOT EXISTS '{user}'@'%' IDENTIFIED BY '{creds['DB_PASSWORD']}';",
            f"GRANT ALL PRIVILEGES ON `{database}`.* TO '{user}'@'%';",
            "FLUSH PRIVILEGES;",
        ]), attempts=1)
        logger.info(f"✓ Database {database} ready for {user}")
        return creds

    def remove_database(self, app: str, user: str) -> List[BackupRecord]:
        """Back up ``app_<app>`` in full, then drop it and its user.

        Raises:
            BackupError: If the safety backup fails; nothing is dropped
        """
        database = self._app_database(app, user)
        try:
            records = self.services.backups.run_backup(
                self.backup_source(), BackupStrategy.FULL, targets=[database]
            )
        except BackupError as e:
            raise BackupError(f"Not dropping {database}: safety backup failed ({e})") from e

        self.run_sql("\n".join([
            f"DROP DATABASE IF EXISTS `{database}`;",
            f"DROP USER IF EXISTS '{user}'@'%';",
            "FLUSH PRIVILEGES;",
        ]), attempts=1)
        logger.info(f"✓ Removed database {database} and user {user}")
        return records

    @staticmethod
    def _app_database(app: str, user: str) -> str:
        for label, value in (("application", app), ("user", user)):
            if not IDENTIFIER.match(value):
                raise ValidationError(
                    f"Invalid {label} name: {value!r} (lowercase letters, digits, underscore; max 32)"
                )
        return f"app_{app}"
