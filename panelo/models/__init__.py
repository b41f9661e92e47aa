"""Data models for panelo."""
from panelo.models.backup import BackupRecord, BackupStrategy, RetentionClass
from panelo.models.config_template import ApplyResult, ApplyStatus, ConfigTemplate
from panelo.models.health import (
    CallableProbe,
    ExecProbe,
    FailureReason,
    HealthCheckSpec,
    HealthOutcome,
    HealthStatus,
    HttpProbe,
)
from panelo.models.module import ModuleDescriptor, ModuleOutcome, ModuleReport, Verb
from panelo.models.reconcile import (
    ReconcileResult,
    ReconcileStatus,
    ReconciliationTarget,
    TargetKind,
)
from panelo.models.service import (
    InstanceHandle,
    InstanceState,
    InstanceStatus,
    PortMapping,
    RestartPolicy,
    ServiceInstanceSpec,
    VolumeMount,
)

__all__ = [
    'ApplyResult',
    'ApplyStatus',
    'BackupRecord',
    'BackupStrategy',
    'CallableProbe',
    'ConfigTemplate',
    'ExecProbe',
    'FailureReason',
    'HealthCheckSpec',
    'HealthOutcome',
    'HealthStatus',
    'HttpProbe',
    'InstanceHandle',
    'InstanceState',
    'InstanceStatus',
    'ModuleDescriptor',
    'ModuleOutcome',
    'ModuleReport',
    'PortMapping',
    'ReconcileResult',
    'ReconcileStatus',
    'ReconciliationTarget',
    'RestartPolicy',
    'RetentionClass',
    'ServiceInstanceSpec',
    'TargetKind',
    'Verb',
    'VolumeMount',
]
