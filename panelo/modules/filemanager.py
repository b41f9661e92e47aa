"""File manager module: FileBrowser behind the proxy at /files/."""
import sys
from pathlib import Path
from typing import Dict

from panelo.core.command import Command
from panelo.models.config_template import ConfigTemplate
from panelo.models.health import HttpProbe, Probe
from panelo.models.module import ModuleDescriptor, Verb
from panelo.models.reconcile import ReconciliationTarget
from panelo.models.service import PortMapping, ServiceInstanceSpec, VolumeMount
from panelo.modules.base import PanelModule
from panelo.modules.nginx import FILEMANAGER_PORT

CONTAINER = "server-panel-filebrowser"
IMAGE = "filebrowser/filebrowser:v2.24.1"
URL = f"http://127.0.0.1:{FILEMANAGER_PORT}/"

# FileBrowser answers 401 until someone logs in; both mean it is serving
READY_STATUSES = (200, 401)

# Mounted as a directory so a replaced settings file is visible in the container
CONFIG_DIR = "/config"


class FileManagerModule(PanelModule):
    descriptor = ModuleDescriptor(
        name="filemanager",
        steps=("directories", "config", "deploy"),
        depends_on=("docker", "nginx"),
        verbs=(Verb.INSTALL, Verb.STATUS, Verb.REPAIR),
        description="FileBrowser web file manager",
    )

    @property
    def root(self) -> Path:
        return self.ctx.service_dir("filemanager")

    def step_directories(self):
        self.ensure_dirs([
            ReconciliationTarget(self.root, mode=0o755),
            ReconciliationTarget(self.root / "config", mode=0o755),
            ReconciliationTarget(self.root / "database", mode=0o755),
            ReconciliationTarget(self.ctx.data_root / "users", mode=0o755),
            ReconciliationTarget(self.ctx.data_root / "apps", mode=0o755),
        ])

    def step_config(self):
        self.apply_config(ConfigTemplate(
            template="filebrowser.json",
            live_path=self.root / "config" / "settings.json",
            context={'BASE_URL': "/files"},
            validator=Command.of(sys.executable, "-m", "json.tool", "{staged}"),
        ))

    def step_deploy(self):
        self.fallback.deploy_with_fallback(
            [self.instance_spec()],
            self.health_check(HttpProbe(URL, accepted_statuses=READY_STATUSES)),
            self.deadline,
        )

    def instance_spec(self) -> ServiceInstanceSpec:
        return ServiceInstanceSpec(
            name=CONTAINER,
            image=IMAGE,
            network=self.ctx.network,
            ports=(PortMapping(FILEMANAGER_PORT, 80),),
            volumes=(
                VolumeMount(self.root / "config", CONFIG_DIR, read_only=True),
                VolumeMount(self.root / "database", "/database"),
                VolumeMount(self.ctx.data_root / "users", "/srv/users"),
                VolumeMount(self.ctx.data_root / "apps", "/srv/apps"),
            ),
            command=("--config", f"{CONFIG_DIR}/settings.json"),
        )

    def readiness_probes(self) -> Dict[str, Probe]:
        return {CONTAINER: HttpProbe(URL, accepted_statuses=READY_STATUSES)}
