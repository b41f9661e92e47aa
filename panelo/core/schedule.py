"""Cron entries for recurring panel jobs (backups, certificate renewal)."""
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from panelo.core.errors import ValidationError
from panelo.core.logger import get_logger

logger = get_logger(__name__)

CRON_FIELDS = re.compile(r'^(\S+\s+){4}\S+$')


@dataclass(frozen=True)
class CronEntry:
    """One line of a cron.d file."""
    schedule: str
    command: str
    user: str = "root"
    comment: str = ""

    def __post_init__(self):
        if not CRON_FIELDS.match(self.schedule.strip()):
            raise ValidationError(f"Invalid cron schedule: {self.schedule!r}")
        if "\n" in self.command:
            raise ValidationError("Cron command must be a single line")

    def render(self) -> str:
        line = f"{self.schedule} {self.user} {self.command}"
        if self.comment:
            return f"# {self.comment}\n{line}"
        return line


def default_entries(
    executable: str = "panelo",
    log_file: str = "/var/log/server-panel/backup.log",
    renewal_log: str = "/var/log/server-panel/ssl-renewal.log",
) -> List[CronEntry]:
    """Daily full backup, partial database backups and certificate renewal."""
    return [
        CronEntry(
            "0 2 * * *",
            f"{executable} backup mysql full >> {log_file} 2>&1",
            comment="Daily full database backup",
        ),
        CronEntry(
            "0 2 * * *",
            f"{executable} backup files >> {log_file} 2>&1",
            comment="Daily configuration archive",
        ),
        CronEntry(
            "0 */6 * * *",
            f"{executable} backup mysql data >> {log_file} 2>&1",
            comment="Partial database backup every 6 hours",
        ),
        CronEntry(
            "15 2,14 * * *",
            f"{executable} ssl renew >> {renewal_log} 2>&1",
            comment="Certificate renewal; the proxy reloads when a certificate changed",
        ),
    ]


class CronSchedule:
    """Owner of ``<cron_dir>/panelo-<name>`` files.

    A schedule file is always written whole, so installing the same entries
    twice leaves exactly one copy of each.
    """

    def __init__(self, cron_dir: Path = Path("/etc/cron.d"), mock: bool = False):
        self.cron_dir = Path(cron_dir)
        self.mock = mock

    def path_for(self, name: str) -> Path:
        return self.cron_dir / f"panelo-{name}"

    def render(self, entries: Sequence[CronEntry]) -> str:
        lines = [
            "# Managed by panelo; changes are overwritten on the next install",
            "SHELL=/bin/sh",
            "PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin",
            "",
        ]
        lines.extend(entry.render() for entry in entries)
        return "\n".join(lines) + "\n"

    def install(self, name: str, entries: Sequence[CronEntry]) -> bool:
        """Write the schedule file for ``name``.

        Returns:
            True if the file changed, False if it already had these entries
        """
        path = self.path_for(name)
        content = self.render(entries)

        if path.is_file() and path.read_text() == content:
            logger.debug(f"{path} already up to date")
            return False

        if self.mock:
            logger.info(f"MOCK: Would write {len(entries)} cron entr{'y' if len(entries) == 1 else 'ies'} to {path}")
            return True

        self.cron_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.cron_dir, prefix=".panelo-")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.chmod(tmp, 0o644)
            os.replace(tmp, path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise

        logger.info(f"✓ Installed {len(entries)} cron entries in {path}")
        return True

    def remove(self, name: str) -> bool:
        path = self.path_for(name)
        if not path.exists():
            return False
        if self.mock:
            logger.info(f"MOCK: Would remove {path}")
            return True
        path.unlink()
        logger.info(f"Removed {path}")
        return True

    def entries(self, name: str) -> List[str]:
        """Schedule lines currently installed for ``name``."""
        path = self.path_for(name)
        if not path.is_file():
            return []
        return [
            line for line in path.read_text().splitlines()
            if line.strip() and not line.startswith("#") and "=" not in line.split()[0]
        ]
