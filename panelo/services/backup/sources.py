"""What can be backed up, and how each target is dumped and restored."""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Sequence

from panelo.core.command import Command, docker
from panelo.core.errors import BackupError
from panelo.models.backup import BackupStrategy

SYSTEM_SCHEMAS = {"information_schema", "performance_schema", "mysql", "sys"}

DUMP_FLAGS: Dict[BackupStrategy, Sequence[str]] = {
    BackupStrategy.SCHEMA: ("--no-data", "--routines", "--triggers"),
    BackupStrategy.DATA: ("--no-create-info", "--skip-triggers"),
    BackupStrategy.FULL: ("--single-transaction", "--routines", "--triggers"),
}


class BackupSource(ABC):
    """A service whose state can be dumped to a stream."""

    name: str = ""
    extension: str = "dump"

    @abstractmethod
    def targets(self) -> List[str]:
        """Enumerate the things to back up (databases, directories)."""

    @abstractmethod
    def dump_command(self, target: str, strategy: BackupStrategy) -> Command:
        """Command writing one target's dump to stdout."""

    def restore_command(self, target: str) -> Command:
        raise BackupError(f"{self.name} backups cannot be restored automatically")


class MySQLBackupSource(BackupSource):
    """Databases inside the panel's MySQL/MariaDB instance.

    The root password is passed through the exec environment, never on the
    dump command line.
    """

    name = "mysql"
    extension = "sql"

    def __init__(self, instances, vault, container_name: str = "server-panel-mysql"):
        self.instances = instances
        self.vault = vault
        self.container_name = container_name

    def _password(self) -> str:
        return self.vault.load("mysql")["MYSQL_ROOT_PASSWORD"]

    def targets(self) -> List[str]:
        result = self.instances.exec(
            self.container_name,
            ["mysql", "-u", "root", "-N", "-B", "-e", "SHOW DATABASES;"],
            env={"MYSQL_PWD": self._password()},
        )
        if not result.ok:
            raise BackupError(f"Cannot list databases in {self.container_name}: {result.output}")
        return [db for db in result.stdout.split() if db not in SYSTEM_SCHEMAS]

    def dump_command(self, target: str, strategy: BackupStrategy) -> Command:
        return docker(
            "exec", "-e", f"MYSQL_PWD={self._password()}", self.container_name,
            "mysqldump", "-u", "root", *DUMP_FLAGS[strategy], target,
        )

    def restore_command(self, target: str) -> Command:
        return docker(
            "exec", "-i", "-e", f"MYSQL_PWD={self._password()}", self.container_name,
            "mysql", "-u", "root", target,
        )


class FilesBackupSource(BackupSource):
    """Directories archived with tar (application files, configuration)."""

    extension = "tar"

    def __init__(self, name: str, paths: Dict[str, Path]):
        """Initialize source.

        Args:
            name: Source name (artifacts go to the backup subdirectory of that name)
            paths: Target name -> directory to archive
        """
        self.name = name
        self.paths = {target: Path(p) for target, p in paths.items()}

    def targets(self) -> List[str]:
        return [name for name, path in self.paths.items() if path.exists()]

    def dump_command(self, target: str, strategy: BackupStrategy) -> Command:
        path = self.paths[target]
        return Command.of("tar", "-C", path.parent, "-cf", "-", path.name)

    def restore_command(self, target: str) -> Command:
        if target not in self.paths:
            raise BackupError(f"Unknown {self.name} target: {target}")
        path = self.paths[target]
        return Command.of("tar", "-C", path.parent, "-xf", "-")
