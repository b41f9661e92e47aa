"""Backup dumps and age-based retention."""
from panelo.services.backup.scheduler import BackupScheduler
from panelo.services.backup.sources import BackupSource, FilesBackupSource, MySQLBackupSource

__all__ = ['BackupScheduler', 'BackupSource', 'FilesBackupSource', 'MySQLBackupSource']
