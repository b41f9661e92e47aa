"""Filesystem reconciliation models."""
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union


class TargetKind(Enum):
    DIRECTORY = "directory"
    FILE = "file"


class ReconcileStatus(Enum):
    """What ensure() had to do to reach the desired state."""
    APPLIED = "applied"      # created or ownership/mode changed
    REPAIRED = "repaired"    # corrupted contents cleared
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ReconciliationTarget:
    """A path with its desired owner, group and mode.

    ``marker`` names a subpath whose presence proves the directory was fully
    initialized by the service that owns it (e.g. ``mysql`` inside a MySQL
    data directory). A non-empty directory without its marker is corrupted.
    """
    path: Path
    owner: Union[str, int] = "root"
    group: Union[str, int] = "root"
    mode: int = 0o755
    kind: TargetKind = TargetKind.DIRECTORY
    marker: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "path", Path(self.path))
        if not self.path.is_absolute():
            raise ValueError(f"Reconciliation target must be absolute: {self.path}")
        if self.marker is not None and self.kind is not TargetKind.DIRECTORY:
            raise ValueError("Only directories can declare a liveness marker")


@dataclass(frozen=True)
class ReconcileResult:
    path: Path
    status: ReconcileStatus
    detail: str = ""

    @property
    def changed(self) -> bool:
        return self.status is not ReconcileStatus.UNCHANGED
