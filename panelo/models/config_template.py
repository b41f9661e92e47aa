"""Configuration template and apply-result models."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple

from panelo.core.command import Command

STAGED_TOKEN = "{staged}"
CONFIG_ROOT_TOKEN = "{config_root}"


@dataclass(frozen=True)
class ConfigSet:
    """Files a checker reads together (``nginx.conf`` plus ``conf.d/``).

    Attributes:
        root: Directory holding the live set
        entries: Names under ``root`` that make up the set (default: all)
    """
    root: Path
    entries: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ConfigTemplate:
    """A template rendered into a live configuration path.

    Attributes:
        template: Template identifier resolved by the TemplateLoader
        context: Placeholder substitutions (``${KEY}`` -> value)
        live_path: File the service reads
        validator: Syntax check; ``{staged}`` in its arguments is replaced with
            the staged file path
        reload: Command signalling the service to pick up the new file
        config_set: The validator reads a whole set of files. It then runs
            against a scratch copy of the set holding the staged content at
            ``live_path``'s place, with ``{config_root}`` replaced by the
            copy's root; the live set is never touched before it passes
        mode: File mode of the live file
    """
    template: str
    live_path: Path
    context: Dict[str, str] = field(default_factory=dict)
    validator: Optional[Command] = None
    reload: Optional[Command] = None
    config_set: Optional[ConfigSet] = None
    mode: int = 0o644


class ApplyStatus(Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ApplyResult:
    live_path: Path
    status: ApplyStatus
    diagnostics: str = ""
    reloaded: bool = False

    @property
    def ok(self) -> bool:
        return self.status is not ApplyStatus.REJECTED
