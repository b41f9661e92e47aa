"""Backup runs and age-based retention of dump artifacts."""
import hashlib
import os
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from panelo.core.command import CommandRunner
from panelo.core.errors import BackupError
from panelo.core.logger import get_logger
from panelo.models.backup import BackupRecord, BackupStrategy, RetentionClass
from panelo.services.backup.sources import BackupSource

logger = get_logger(__name__)

STAMP_FORMAT = "%Y%m%d_%H%M%S"

ARTIFACT_NAME = re.compile(
    r'^(?P<target>.+)_(?P<strategy>schema|data|full)_(?P<stamp>\d{8}_\d{6})\.(?P<ext>[a-z]+)\.gz$'
)

# Subdirectory of the backup root per source
SOURCE_DIRS = {
    'mysql': 'databases',
    'files': 'files',
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def artifact_name(target: str, strategy: BackupStrategy, when: datetime, extension: str) -> str:
    """File name for one dump: ``<target>_<strategy>_<YYYYmmdd_HHMMSS>.<ext>.gz``."""
    return f"{target}_{strategy.value}_{when.strftime(STAMP_FORMAT)}.{extension}.gz"


def _digest(path: Path) -> Tuple[int, str]:
    sha = hashlib.sha256()
    size = 0
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(64 * 1024), b''):
            sha.update(chunk)
            size += len(chunk)
    return size, sha.hexdigest()


class BackupScheduler:
    """Dump backup sources and prune artifacts past the retention window.

    Pruning is the only code path in panelo that deletes backup artifacts.
    """

    def __init__(
        self,
        backup_dir: Path,
        runner: CommandRunner,
        retention_days: int = 7,
        clock=_utcnow,
    ):
        """Initialize scheduler.

        Args:
            backup_dir: Root directory for artifacts (``<data_root>/backups``)
            runner: Command executor used for dumps and restores
            retention_days: Default retention window in days
            clock: Returns the current UTC time (injectable for tests)
        """
        self.backup_dir = Path(backup_dir)
        self.runner = runner
        self.retention_days = retention_days
        self.clock = clock

    def directory_for(self, source_name: str) -> Path:
        return self.backup_dir / SOURCE_DIRS.get(source_name, source_name)

    def run_backup(
        self,
        source: BackupSource,
        strategy: BackupStrategy = BackupStrategy.FULL,
        targets: Optional[Iterable[str]] = None,
        retention_days: Optional[int] = None,
    ) -> List[BackupRecord]:
        """Dump every target of ``source``, then prune old artifacts.

        Args:
            source: What to back up
            strategy: schema, data or full
            targets: Restrict to these targets (default: all the source lists)
            retention_days: Override the retention window for this run

        Returns:
            Records of the artifacts written

        Raises:
            BackupError: If any target failed to dump (successful dumps are
                kept and pruning still runs)
        """
        directory = self.directory_for(source.name)
        if not self.runner.mock:
            directory.mkdir(parents=True, exist_ok=True)
            os.chmod(directory, 0o700)

        targets = list(targets) if targets is not None else source.targets()
        if not targets:
            logger.warning(f"⚠ Nothing to back up for {source.name}")

        retention_class = RetentionClass.DAILY if strategy is BackupStrategy.FULL else RetentionClass.PARTIAL
        records: List[BackupRecord] = []
        failed: List[str] = []

        for target in targets:
            now = self.clock()
            path = directory / artifact_name(target, strategy, now, source.extension)
            result = self.runner.run_to_file(source.dump_command(target, strategy), path, compress=True)

            if not result.ok:
                logger.error(f"✗ Backup of {target} failed: {result.output}")
                failed.append(target)
                continue

            if self.runner.mock:
                size, sha256 = 0, ""
            else:
                os.chmod(path, 0o600)
                size, sha256 = _digest(path)

            records.append(BackupRecord(
                source=source.name,
                target=target,
                timestamp=now,
                path=path,
                size=size,
                sha256=sha256,
                strategy=strategy,
                retention_class=retention_class,
            ))
            logger.info(f"✓ Backed up {target} ({strategy.value}) -> {path.name}")

        if records or not failed:
            window = self.retention_days if retention_days is None else retention_days
            self.prune_older_than(window, source.name)
        else:
            logger.warning("⚠ Every dump failed; skipping retention pruning")

        if failed:
            raise BackupError(f"Backup failed for: {', '.join(failed)}")
        return records

    def list_records(self, source_name: Optional[str] = None) -> List[BackupRecord]:
        """Existing artifacts, oldest first.

        The timestamp comes from the artifact name; files that don't follow
        the naming scheme fall back to their modification time.
        """
        if source_name is not None:
            roots = [(source_name, self.directory_for(source_name))]
        else:
            roots = [(name, self.directory_for(name)) for name in SOURCE_DIRS]

        records = []
        for name, root in roots:
            if not root.is_dir():
                continue
            for path in root.glob('*.gz'):
                if path.is_file():
                    records.append(self._record_for(name, path))

        records.sort(key=lambda r: r.timestamp)
        return records

    def prune_older_than(self, days: float, source_name: Optional[str] = None) -> List[Path]:
        """Delete artifacts whose age is strictly greater than ``days``.

        Returns:
            Paths that were deleted
        """
        window = timedelta(days=days)
        now = self.clock()
        removed = []

        for record in self.list_records(source_name):
            if record.age(now) <= window:
                continue
            if self.runner.mock:
                logger.info(f"MOCK: Would delete {record.path}")
            else:
                record.path.unlink(missing_ok=True)
            removed.append(record.path)

        if removed:
            logger.info(f"Pruned {len(removed)} backup(s) older than {days:g} day(s)")
        else:
            logger.debug(f"No backups older than {days:g} day(s)")
        return removed

    def restore(self, source: BackupSource, path: Path, target: Optional[str] = None) -> None:
        """Stream a compressed artifact back into its source.

        Args:
            source: Source the artifact belongs to
            path: Artifact to restore
            target: Restore into this target instead of the one in the name

        Raises:
            BackupError: If the artifact is missing or the restore fails
        """
        path = Path(path)
        if not path.is_file() and not self.runner.mock:
            raise BackupError(f"Backup file not found: {path}")

        if target is None:
            match = ARTIFACT_NAME.match(path.name)
            if not match:
                raise BackupError(f"Cannot tell the restore target from {path.name}; pass one explicitly")
            target = match.group('target')

        result = self.runner.run_from_file(source.restore_command(target), path, decompress=True)
        if not result.ok:
            raise BackupError(f"Restore of {path.name} into {target} failed: {result.output}")
        logger.info(f"✓ Restored {path.name} into {target}")

    def _record_for(self, source_name: str, path: Path) -> BackupRecord:
        stat = path.stat()
        match = ARTIFACT_NAME.match(path.name)
        if match:
            timestamp = datetime.strptime(match.group('stamp'), STAMP_FORMAT).replace(tzinfo=timezone.utc)
            strategy = BackupStrategy(match.group('strategy'))
            target = match.group('target')
        else:
            timestamp = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
            strategy = BackupStrategy.FULL
            target = path.name.split('.', 1)[0]

        return BackupRecord(
            source=source_name,
            target=target,
            timestamp=timestamp,
            path=path,
            size=stat.st_size,
            strategy=strategy,
            retention_class=RetentionClass.DAILY if strategy is BackupStrategy.FULL else RetentionClass.PARTIAL,
        )
