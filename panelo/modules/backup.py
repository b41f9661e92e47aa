"""Backup module: artifact directories, schedule, and the backup verb."""
from typing import List, Optional

from panelo.core.errors import ValidationError
from panelo.core.logger import get_logger
from panelo.core.schedule import default_entries
from panelo.models.backup import BackupRecord, BackupStrategy
from panelo.models.module import ModuleDescriptor, Verb
from panelo.models.reconcile import ReconciliationTarget
from panelo.models.service import InstanceState, InstanceStatus
from panelo.modules.base import PanelModule
from panelo.modules.mysql import MySQLModule
from panelo.services.backup.sources import FilesBackupSource

logger = get_logger(__name__)

BACKUP_TARGETS = ("all", "mysql", "files")


class BackupModule(PanelModule):
    descriptor = ModuleDescriptor(
        name="backup",
        steps=("directories", "schedule"),
        depends_on=("mysql",),
        verbs=(Verb.INSTALL, Verb.STATUS, Verb.BACKUP, Verb.REPAIR),
        description="Scheduled database and configuration backups with retention",
    )

    def step_directories(self):
        backup_dir = self.ctx.backup_dir
        self.ensure_dirs([
            ReconciliationTarget(backup_dir, mode=0o700),
            ReconciliationTarget(backup_dir / "databases", mode=0o700),
            ReconciliationTarget(backup_dir / "files", mode=0o700),
        ])

    def step_schedule(self):
        self.services.schedule.install("backup", default_entries())

    def files_source(self) -> FilesBackupSource:
        """Configuration worth keeping: proxy set, service configs, credentials."""
        return FilesBackupSource("files", {
            'nginx': self.ctx.nginx_dir,
            'credentials': self.ctx.credentials_dir,
            'mysql-config': self.ctx.service_dir("mysql") / "config",
            'filemanager-config': self.ctx.service_dir("filemanager") / "config",
            'prometheus': self.ctx.service_dir("monitoring") / "prometheus",
        })

    def backup(self, target: Optional[str] = None, mode: Optional[str] = None,
               database: Optional[str] = None) -> List[BackupRecord]:
        """Back up databases (``mysql``), configuration (``files``) or both.

        Args:
            target: all, mysql or files (default: all)
            mode: Database dump strategy: schema, data or full
            database: Restrict the database dump to one database
        """
        target = target or "all"
        if target not in BACKUP_TARGETS:
            raise ValidationError(f"Unknown backup target: {target} ({', '.join(BACKUP_TARGETS)})")

        records: List[BackupRecord] = []
        if target in ("all", "mysql"):
            records.extend(MySQLModule(self.services).backup(database, mode))
        if target in ("all", "files"):
            records.extend(self.services.backups.run_backup(self.files_source(), BackupStrategy.FULL))

        logger.info(f"✓ {len(records)} backup artifact(s) written")
        return records

    def status(self) -> List[InstanceStatus]:
        entries = self.services.schedule.entries("backup")
        state = InstanceState.RUNNING if entries else InstanceState.MISSING
        latest = self.services.backups.list_records()
        detail = f"last backup {latest[-1].timestamp:%Y-%m-%d %H:%M} UTC" if latest else "no backups yet"
        return [InstanceStatus("backup-schedule", state, bool(entries), detail=detail)]

    def repair(self, deadline=None):
        return self.install(deadline)
