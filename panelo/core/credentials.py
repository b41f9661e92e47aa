"""Credential vault: generate secrets once, reuse them on every later run."""
import os
import re
import secrets
import string
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional

from panelo.core.errors import CredentialError
from panelo.core.logger import get_logger

logger = get_logger(__name__)

ALPHABET = string.ascii_letters + string.digits
KEY_PATTERN = re.compile(r'^[A-Z_][A-Z0-9_]*$')
LINE_PATTERN = re.compile(r'^([A-Z_][A-Z0-9_]*)=(.*)$')


@dataclass
class CredentialSet:
    """Named secrets of one service and where they are persisted."""
    service: str
    path: Path
    values: Dict[str, str] = field(default_factory=dict)

    def __getitem__(self, key: str) -> str:
        return self.values[key]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.values.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self.values


class CredentialVault:
    """Owner of every persisted credential file.

    Files live at ``<root>/<service>.env`` as ``KEY="value"`` lines with mode
    0600. Provisioning only ever calls get_or_create(), which never changes a
    value that already exists; rotation is a separate, explicit operation.
    """

    def __init__(self, root: Path, length: int = 32, mock: bool = False):
        """Initialize vault.

        Args:
            root: Directory holding one credential file per service
            length: Length of generated secrets
            mock: If True, generate in memory and never write files
        """
        self.root = Path(root)
        self.length = length
        self.mock = mock
        self._mock_store: Dict[str, Dict[str, str]] = {}

    def path_for(self, service: str) -> Path:
        if not re.match(r'^[a-z0-9][a-z0-9_-]*$', service):
            raise CredentialError(f"Invalid service name for credentials: {service!r}")
        return self.root / f"{service}.env"

    def get_or_create(self, service: str, keys: Iterable[str]) -> CredentialSet:
        """Return credentials for ``service``, generating only what is missing.

        Args:
            service: Service name (one credential file per service)
            keys: Secret names the caller needs

        Returns:
            CredentialSet holding the union of existing and generated keys
        """
        keys = list(keys)
        for key in keys:
            _check_key(key)

        existing = self._read(service)
        missing = [k for k in keys if k not in existing]
        if not missing:
            logger.debug(f"Reusing stored credentials for {service}")
            return CredentialSet(service, self.path_for(service), existing)

        values = dict(existing)
        for key in missing:
            values[key] = self.generate()
        self._write(service, values)

        if existing:
            logger.info(f"✓ Added {len(missing)} credential(s) to {service}: {', '.join(missing)}")
        else:
            logger.info(f"✓ Generated credentials for {service}")
        return CredentialSet(service, self.path_for(service), values)

    def rotate(self, service: str, keys: Iterable[str]) -> CredentialSet:
        """Regenerate the named secrets, keeping every other value."""
        keys = list(keys)
        for key in keys:
            _check_key(key)

        values = self._read(service)
        for key in keys:
            values[key] = self.generate()
        self._write(service, values)

        logger.warning(f"⚠ Rotated {', '.join(keys)} for {service}; dependent services need the new values")
        return CredentialSet(service, self.path_for(service), values)

    def set(self, service: str, values: Dict[str, str]) -> CredentialSet:
        """Store fixed connection facts (host, port, database) next to secrets."""
        for key, value in values.items():
            _check_key(key)
            _check_value(key, value)

        merged = self._read(service)
        if all(merged.get(k) == v for k, v in values.items()):
            return CredentialSet(service, self.path_for(service), merged)

        merged.update(values)
        self._write(service, merged)
        return CredentialSet(service, self.path_for(service), merged)

    def load(self, service: str) -> CredentialSet:
        """Read stored credentials without generating anything.

        Raises:
            CredentialError: If no credential file exists for ``service``
        """
        values = self._read(service)
        if not values:
            raise CredentialError(
                f"No credentials stored for {service} at {self.path_for(service)}; "
                f"install the {service} module first"
            )
        return CredentialSet(service, self.path_for(service), values)

    def exists(self, service: str) -> bool:
        if self.mock:
            return service in self._mock_store
        return self.path_for(service).exists()

    def generate(self) -> str:
        return "".join(secrets.choice(ALPHABET) for _ in range(self.length))

    def _read(self, service: str) -> Dict[str, str]:
        if self.mock:
            return dict(self._mock_store.get(service, {}))

        path = self.path_for(service)
        if not path.exists():
            return {}

        values: Dict[str, str] = {}
        try:
            text = path.read_text()
        except OSError as e:
            raise CredentialError(f"Cannot read {path}: {e}") from e

        for number, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            match = LINE_PATTERN.match(line)
            if not match:
                raise CredentialError(f"Malformed line {number} in {path}")
            key, raw = match.groups()
            values[key] = _unquote(raw)
        return values

    def _write(self, service: str, values: Dict[str, str]):
        if self.mock:
            logger.info(f"MOCK: Would write {len(values)} credential(s) for {service}")
            self._mock_store[service] = dict(values)
            return

        path = self.path_for(service)
        path.parent.mkdir(parents=True, exist_ok=True)
        os.chmod(path.parent, 0o700)

        lines = [f"# {service} credentials managed by panelo", ""]
        for key, value in values.items():
            _check_value(key, value)
            lines.append(f'{key}="{value}"')
        content = "\n".join(lines) + "\n"

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{service}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise CredentialError(f"Cannot write {path}: {e}") from e


def _check_key(key: str):
    if not KEY_PATTERN.match(key):
        raise CredentialError(f"Invalid credential key: {key!r}")


def _check_value(key: str, value: str):
    if any(ch in value for ch in ('"', "\n", "\r", "\\", "$", "`")):
        raise CredentialError(f"Value for {key} contains characters that cannot be stored")


def _unquote(raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ('"', "'"):
        return raw[1:-1]
    return raw
