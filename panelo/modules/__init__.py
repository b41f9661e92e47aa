"""Installable modules, registered by name in install order."""
from typing import Dict, Type

from panelo.modules.backup import BackupModule
from panelo.modules.base import ModuleServices, PanelModule
from panelo.modules.docker import DockerModule
from panelo.modules.filemanager import FileManagerModule
from panelo.modules.monitoring import MonitoringModule
from panelo.modules.mysql import MySQLModule
from panelo.modules.nginx import NginxModule
from panelo.modules.ssl import SslModule

REGISTRY: Dict[str, Type[PanelModule]] = {
    module.descriptor.name: module
    for module in (
        DockerModule,
        MySQLModule,
        NginxModule,
        SslModule,
        FileManagerModule,
        MonitoringModule,
        BackupModule,
    )
}

__all__ = [
    'REGISTRY',
    'BackupModule',
    'DockerModule',
    'FileManagerModule',
    'ModuleServices',
    'MonitoringModule',
    'MySQLModule',
    'NginxModule',
    'PanelModule',
    'SslModule',
]
