"""Backup artifact models."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path


class BackupStrategy(Enum):
    SCHEMA = "schema"
    DATA = "data"
    FULL = "full"


class RetentionClass(Enum):
    DAILY = "daily"
    PARTIAL = "partial"


@dataclass(frozen=True)
class BackupRecord:
    """One backup artifact on disk."""
    source: str
    target: str
    timestamp: datetime
    path: Path
    size: int = 0
    sha256: str = ""
    strategy: BackupStrategy = BackupStrategy.FULL
    retention_class: RetentionClass = RetentionClass.DAILY

    def age(self, now: datetime) -> timedelta:
        return now - self.timestamp
