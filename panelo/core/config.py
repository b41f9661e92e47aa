"""Provisioning context: immutable runtime settings for one orchestrator run."""
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from panelo.core.errors import ValidationError

SETTINGS_PATHS = [
    "./panelo.yml",
    "/etc/panelo/panelo.yml",
]


@dataclass(frozen=True)
class ProvisioningContext:
    """Settings passed explicitly into every component.

    Attributes:
        data_root: Root for persistent panel state (default: /var/server-panel)
        network: Shared Docker network joined by all instances
        log_file: Install log location
        lock_file: Run-lock preventing concurrent orchestrator runs
        cron_dir: Directory receiving schedule entries
        nginx_dir: Host directory holding the proxy configuration set
        letsencrypt_dir: Certificate store shared by certbot and the proxy
        templates_dir: Override for bundled configuration templates
        domain: Public name the panel is served under
        email: Contact address for certificate registration
        install_timeout: Seconds one install run may take before health
            polling is cancelled (default: 1800)
        health_interval: Seconds between readiness polls (default: 2)
        health_max_attempts: Readiness polls per candidate (default: 60)
        password_length: Length of generated secrets (default: 32)
        backup_retention_days: Age after which backup artifacts are pruned
        manage_ownership: Apply owner/group during reconciliation
        mock: Record external commands and filesystem changes instead of
            performing them
    """

    data_root: Path = Path("/var/server-panel")
    network: str = "server-panel"
    log_file: Path = Path("/var/log/server-panel/panelo.log")
    lock_file: Path = Path("/var/run/panelo/panelo.lock")
    cron_dir: Path = Path("/etc/cron.d")
    nginx_dir: Path = Path("/var/server-panel/nginx")
    letsencrypt_dir: Path = Path("/etc/letsencrypt")
    templates_dir: Optional[Path] = None
    domain: str = "localhost"
    email: str = "admin@panelo.local"
    install_timeout: float = 1800.0
    health_interval: float = 2.0
    health_max_attempts: int = 60
    password_length: int = 32
    backup_retention_days: int = 7
    manage_ownership: bool = True
    mock: bool = False

    @property
    def credentials_dir(self) -> Path:
        return self.data_root / "credentials"

    @property
    def backup_dir(self) -> Path:
        return self.data_root / "backups"

    def service_dir(self, service: str) -> Path:
        """Per-service state directory under the data root."""
        return self.data_root / service

    @classmethod
    def from_env(cls, **overrides) -> "ProvisioningContext":
        """Create a context from PANELO_* environment variables.

        Environment variables:
            PANELO_DATA_ROOT, PANELO_NETWORK, PANELO_LOG_FILE, PANELO_LOCK_FILE,
            PANELO_CRON_DIR, PANELO_NGINX_DIR, PANELO_LETSENCRYPT_DIR,
            PANELO_TEMPLATES_DIR, PANELO_DOMAIN, PANELO_EMAIL,
            PANELO_INSTALL_TIMEOUT,
            PANELO_HEALTH_INTERVAL, PANELO_HEALTH_MAX_ATTEMPTS,
            PANELO_PASSWORD_LENGTH, PANELO_BACKUP_RETENTION_DAYS,
            PANELO_MANAGE_OWNERSHIP, PANELO_MOCK

        Args:
            **overrides: Explicit values that win over the environment

        Returns:
            ProvisioningContext with values from environment or defaults
        """
        values = {}
        for f in fields(cls):
            raw = os.getenv(f"PANELO_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(f.name, raw, getattr(cls, f.name))
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_settings(self, settings: "PanelSettings") -> "ProvisioningContext":
        """Overlay values from a validated settings file."""
        changes = {}
        for name, value in settings.model_dump(exclude_none=True).items():
            default = getattr(self, name)
            changes[name] = Path(value) if isinstance(default, Path) or name == "templates_dir" else value
        return replace(self, **changes)


class PanelSettings(BaseModel):
    """Schema of the optional panelo.yml settings file."""

    model_config = ConfigDict(extra='forbid')

    data_root: Optional[str] = None
    network: Optional[str] = Field(None, pattern=r'^[a-zA-Z0-9][a-zA-Z0-9_.-]*$')
    log_file: Optional[str] = None
    lock_file: Optional[str] = None
    cron_dir: Optional[str] = None
    nginx_dir: Optional[str] = None
    letsencrypt_dir: Optional[str] = None
    templates_dir: Optional[str] = None
    domain: Optional[str] = None
    email: Optional[str] = Field(None, pattern=r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+$')
    install_timeout: Optional[float] = Field(None, gt=0)
    health_interval: Optional[float] = Field(None, gt=0)
    health_max_attempts: Optional[int] = Field(None, ge=1)
    password_length: Optional[int] = Field(None, ge=16, le=128)
    backup_retention_days: Optional[int] = Field(None, ge=1)
    manage_ownership: Optional[bool] = None


def find_settings(settings_path: Optional[str] = None) -> Optional[Path]:
    """Locate the active settings file, if any."""
    if settings_path:
        return Path(settings_path)

    if env_path := os.environ.get("PANELO_CONFIG"):
        return Path(env_path)

    for path in SETTINGS_PATHS:
        if Path(path).exists():
            return Path(path)

    return None


def load_settings(path: Path) -> PanelSettings:
    """Load and validate a YAML settings file.

    Raises:
        ValidationError: If the file is missing, unparsable, or fails the schema
    """
    if not path.exists():
        raise ValidationError(f"Settings file not found: {path}")

    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ValidationError(f"Settings file {path} must contain a mapping")

    try:
        return PanelSettings(**raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid settings in {path}:\n{e}") from e


def build_context(settings_path: Optional[str] = None, **overrides) -> ProvisioningContext:
    """Environment defaults, overlaid by the settings file, overlaid by CLI flags."""
    context = ProvisioningContext.from_env()
    path = find_settings(settings_path)
    if path is not None:
        context = context.with_settings(load_settings(path))
    explicit = {k: v for k, v in overrides.items() if v is not None}
    return replace(context, **explicit) if explicit else context


def _coerce(name: str, raw: str, default):
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, Path) or name == "templates_dir":
        return Path(raw)
    return raw
