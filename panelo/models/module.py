"""Module definitions and per-module run reports."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple


class Verb(Enum):
    INSTALL = "install"
    STATUS = "status"
    BACKUP = "backup"
    REPAIR = "repair"


@dataclass(frozen=True)
class ModuleDescriptor:
    """Static definition of an installable module.

    Attributes:
        name: Module name used on the command line
        steps: Install steps, run strictly in this order
        depends_on: Modules that must be provisioned first
        verbs: Verbs the module supports
        extra_verbs: Module-specific verbs (e.g. ``site add``)
    """
    name: str
    steps: Tuple[str, ...]
    depends_on: Tuple[str, ...] = ()
    verbs: Tuple[Verb, ...] = (Verb.INSTALL, Verb.STATUS, Verb.REPAIR)
    extra_verbs: Tuple[str, ...] = ()
    description: str = ""

    def supports(self, verb: Verb) -> bool:
        return verb in self.verbs


class ModuleOutcome(Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ModuleReport:
    """What happened to one module during a sequencer run."""
    name: str
    outcome: ModuleOutcome = ModuleOutcome.OK
    completed_steps: List[str] = field(default_factory=list)
    failed_step: str = ""
    error: str = ""
    logs: str = ""
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome is ModuleOutcome.OK
