"""Reverse proxy module: nginx in a container, serving the panel and app sites."""
from pathlib import Path
from typing import Dict

from panelo.models.config_template import ApplyResult, ConfigTemplate
from panelo.models.health import HttpProbe, Probe
from panelo.models.module import ModuleDescriptor, Verb
from panelo.models.reconcile import ReconciliationTarget
from panelo.models.service import ServiceInstanceSpec, VolumeMount
from panelo.modules.base import PanelModule
from panelo.services.proxy.sites import (
    MAIN_CONF,
    MAIN_CONF_DIR,
    NGINX_CONTAINER,
    NGINX_IMAGE,
    ReverseProxySites,
)

HEALTH_URL = "http://127.0.0.1/nginx-health"

FRONTEND_PORT = 3000
BACKEND_PORT = 3001
FILEMANAGER_PORT = 8080


class NginxModule(PanelModule):
    """Proxy container on the host network in front of every loopback service."""

    descriptor = ModuleDescriptor(
        name="nginx",
        steps=("directories", "main_config", "panel_site", "deploy"),
        depends_on=("docker",),
        verbs=(Verb.INSTALL, Verb.STATUS, Verb.REPAIR),
        extra_verbs=("site add", "site remove"),
        description="nginx reverse proxy for the panel and application sites",
    )

    @property
    def conf_dir(self) -> Path:
        return self.ctx.nginx_dir / "conf.d"

    @property
    def sites(self) -> ReverseProxySites:
        return ReverseProxySites(self.ctx, self.applier, self.instances)

    def step_directories(self):
        self.ensure_dirs([
            ReconciliationTarget(self.ctx.nginx_dir, mode=0o755),
            ReconciliationTarget(self.conf_dir, mode=0o755),
            ReconciliationTarget(self.ctx.nginx_dir / "logs", mode=0o755),
            ReconciliationTarget(self.ctx.data_root / "www", mode=0o755),
            ReconciliationTarget(self.ctx.letsencrypt_dir, mode=0o755),
        ])

    def step_main_config(self):
        self.apply_config(self._config(
            "nginx.conf",
            self.ctx.nginx_dir / "nginx.conf",
            {'CLIENT_MAX_BODY_SIZE': "100M"},
        ))

    def step_panel_site(self):
        self.apply_config(self._config(
            "panel.conf",
            self.conf_dir / "panel.conf",
            {
                'DOMAIN': self.ctx.domain,
                'FRONTEND_PORT': str(FRONTEND_PORT),
                'BACKEND_PORT': str(BACKEND_PORT),
                'FILEMANAGER_PORT': str(FILEMANAGER_PORT),
            },
        ))

    def _config(self, template: str, live_path: Path, context: Dict[str, str]) -> ConfigTemplate:
        sites = self.sites
        return ConfigTemplate(
            template=template,
            live_path=live_path,
            context=context,
            validator=sites.check_command,
            config_set=sites.config_set,
        )

    def step_deploy(self):
        self.fallback.deploy_with_fallback(
            [self.instance_spec()],
            self.health_check(HttpProbe(HEALTH_URL)),
            self.deadline,
        )

    def instance_spec(self) -> ServiceInstanceSpec:
        # Host networking so upstreams on 127.0.0.1 resolve to the host's services.
        # Directories are mounted rather than single files so replaced files are seen.
        return ServiceInstanceSpec(
            name=NGINX_CONTAINER,
            image=NGINX_IMAGE,
            network="host",
            volumes=(
                VolumeMount(self.ctx.nginx_dir, MAIN_CONF_DIR, read_only=True),
                VolumeMount(self.conf_dir, "/etc/nginx/conf.d", read_only=True),
                VolumeMount(self.ctx.nginx_dir / "logs", "/var/log/nginx"),
                VolumeMount(self.ctx.data_root / "www", "/var/www/html", read_only=True),
                VolumeMount(self.ctx.letsencrypt_dir, "/etc/letsencrypt", read_only=True),
            ),
            command=("nginx", "-c", MAIN_CONF, "-g", "daemon off;"),
        )

    def readiness_probes(self) -> Dict[str, Probe]:
        return {NGINX_CONTAINER: HttpProbe(HEALTH_URL)}

    # ==================== Sites ====================

    def add_site(self, name: str, domain: str, port: int) -> ApplyResult:
        return self.sites.add(name, domain, port)

    def remove_site(self, name: str) -> ApplyResult:
        return self.sites.remove(name)
