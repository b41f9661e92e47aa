"""Idempotent filesystem reconciliation with corruption repair."""
import grp
import os
import pwd
import shutil
import stat
from pathlib import Path
from typing import Iterable, List, Union

from panelo.core.errors import ReconcileError
from panelo.core.logger import get_logger
from panelo.models.reconcile import (
    ReconcileResult,
    ReconcileStatus,
    ReconciliationTarget,
    TargetKind,
)

logger = get_logger(__name__)


class ResourceReconciler:
    """Make on-disk paths match their declared owner, group and mode.

    Applying a target twice leaves the same state as applying it once. A
    directory that declares a liveness marker and is non-empty without it is
    treated as a half-initialized leftover and cleared, so the service that
    owns it initializes from scratch instead of failing on stale files.
    """

    def __init__(self, mock: bool = False, manage_ownership: bool = True):
        """Initialize reconciler.

        Args:
            mock: If True, log intended changes without touching the filesystem
            manage_ownership: Apply owner/group (requires privilege)
        """
        self.mock = mock
        self.manage_ownership = manage_ownership

    def ensure(self, target: ReconciliationTarget) -> ReconcileResult:
        """Bring one target to its desired state.

        Returns:
            ReconcileResult with APPLIED, REPAIRED or UNCHANGED

        Raises:
            ReconcileError: If the path is of the wrong kind or ownership/mode
                cannot be set
        """
        path = target.path

        if self.mock:
            logger.info(f"MOCK: Would ensure {target.kind.value} {path} "
                        f"({target.owner}:{target.group} {oct(target.mode)})")
            return ReconcileResult(path, ReconcileStatus.UNCHANGED, "mock")

        status = ReconcileStatus.UNCHANGED
        details: List[str] = []

        if target.kind is TargetKind.DIRECTORY:
            if not path.exists():
                path.mkdir(parents=True)
                status = ReconcileStatus.APPLIED
                details.append("created")
            elif not path.is_dir():
                raise ReconcileError(f"{path} exists but is not a directory")
            elif target.marker and self.is_corrupted(path, target.marker):
                removed = self.clear(path)
                status = ReconcileStatus.REPAIRED
                details.append(f"cleared {removed} stray entries (marker '{target.marker}' missing)")
                logger.warning(f"⚠ Corrupted directory {path}: {details[-1]}")
        else:
            if not path.exists():
                path.parent.mkdir(parents=True, exist_ok=True)
                path.touch()
                status = ReconcileStatus.APPLIED
                details.append("created")
            elif path.is_dir():
                raise ReconcileError(f"{path} exists but is a directory")

        details.extend(self._apply_attributes(path, target))
        if details and status is ReconcileStatus.UNCHANGED:
            status = ReconcileStatus.APPLIED

        detail = ", ".join(details)
        if status is ReconcileStatus.UNCHANGED:
            logger.debug(f"{path} already reconciled")
        else:
            logger.info(f"✓ {path}: {status.value} ({detail})")

        return ReconcileResult(path, status, detail)

    def ensure_all(self, targets: Iterable[ReconciliationTarget]) -> List[ReconcileResult]:
        """Apply targets in order, stopping at the first failure."""
        return [self.ensure(target) for target in targets]

    @staticmethod
    def is_corrupted(path: Path, marker: str) -> bool:
        """True when ``path`` has content but not its initialization marker."""
        if (path / marker).exists():
            return False
        return any(path.iterdir())

    def clear(self, path: Path) -> int:
        """Remove everything inside ``path``, keeping the directory itself.

        Returns:
            Number of top-level entries removed
        """
        path = Path(path)
        if self.mock:
            logger.info(f"MOCK: Would clear {path}")
            return 0

        if not path.is_dir():
            return 0

        removed = 0
        for child in path.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
            removed += 1

        if removed:
            logger.info(f"Cleared {removed} entries from {path}")
        return removed

    def reset(self, target: ReconciliationTarget) -> ReconcileResult:
        """Clear a directory target unconditionally and re-apply its attributes."""
        removed = self.clear(target.path)
        result = self.ensure(target)
        if removed:
            return ReconcileResult(target.path, ReconcileStatus.REPAIRED, f"reset ({removed} entries removed)")
        return result

    def _apply_attributes(self, path: Path, target: ReconciliationTarget) -> List[str]:
        changes = []
        st = path.stat()

        if self.manage_ownership:
            uid = _resolve_id(target.owner, pwd.getpwnam, "pw_uid", "user")
            gid = _resolve_id(target.group, grp.getgrnam, "gr_gid", "group")
            if st.st_uid != uid or st.st_gid != gid:
                try:
                    os.chown(path, uid, gid)
                except OSError as e:
                    raise ReconcileError(
                        f"Cannot set ownership {target.owner}:{target.group} on {path}: {e}"
                    ) from e
                changes.append(f"owner {uid}:{gid}")

        if stat.S_IMODE(st.st_mode) != target.mode:
            try:
                os.chmod(path, target.mode)
            except OSError as e:
                raise ReconcileError(f"Cannot set mode {oct(target.mode)} on {path}: {e}") from e
            changes.append(f"mode {oct(target.mode)}")

        return changes


def _resolve_id(value: Union[str, int], lookup, attribute: str, kind: str) -> int:
    if isinstance(value, int):
        return value
    if value.isdigit():
        return int(value)
    try:
        return getattr(lookup(value), attribute)
    except KeyError as e:
        raise ReconcileError(f"Unknown {kind}: {value}") from e
