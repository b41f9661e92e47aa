"""Monitoring module: Prometheus, node exporter and Grafana."""
from pathlib import Path
from typing import Dict

from panelo.core.command import docker
from panelo.models.config_template import ConfigTemplate
from panelo.models.health import HttpProbe, Probe
from panelo.models.module import ModuleDescriptor, Verb
from panelo.models.reconcile import ReconciliationTarget
from panelo.models.service import PortMapping, ServiceInstanceSpec, VolumeMount
from panelo.modules.base import PanelModule

PROMETHEUS = "server-panel-prometheus"
PROMETHEUS_IMAGE = "prom/prometheus:v2.48.1"
PROMETHEUS_PORT = 9090

NODE_EXPORTER = "server-panel-node-exporter"
NODE_EXPORTER_IMAGE = "prom/node-exporter:v1.7.0"

GRAFANA = "server-panel-grafana"
GRAFANA_IMAGE = "grafana/grafana:10.2.3"
GRAFANA_PORT = 3030

# uids the images run as
PROMETHEUS_UID = "65534"
GRAFANA_UID = "472"


class MonitoringModule(PanelModule):
    descriptor = ModuleDescriptor(
        name="monitoring",
        steps=("directories", "credentials", "config", "deploy_exporter", "deploy_prometheus", "deploy_grafana"),
        depends_on=("docker",),
        verbs=(Verb.INSTALL, Verb.STATUS, Verb.REPAIR),
        description="Prometheus metrics with node exporter and Grafana dashboards",
    )

    @property
    def root(self) -> Path:
        return self.ctx.service_dir("monitoring")

    @property
    def prometheus_config(self) -> Path:
        return self.root / "prometheus" / "prometheus.yml"

    def step_directories(self):
        self.ensure_dirs([
            ReconciliationTarget(self.root, mode=0o755),
            ReconciliationTarget(self.root / "prometheus", mode=0o755),
            ReconciliationTarget(self.root / "prometheus-data", owner=PROMETHEUS_UID, group=PROMETHEUS_UID, mode=0o755),
            ReconciliationTarget(self.root / "grafana-data", owner=GRAFANA_UID, group=GRAFANA_UID, mode=0o755),
        ])

    def step_credentials(self):
        self.vault.get_or_create("monitoring", ["GRAFANA_ADMIN_PASSWORD"])

    def step_config(self):
        self.apply_config(ConfigTemplate(
            template="prometheus.yml",
            live_path=self.prometheus_config,
            context={'SCRAPE_INTERVAL': "15s", 'NODE_EXPORTER': f"{NODE_EXPORTER}:9100"},
            validator=docker(
                "run", "--rm", "--entrypoint", "promtool",
                "-v", "{staged}:/etc/prometheus/prometheus.yml:ro",
                PROMETHEUS_IMAGE, "check", "config", "/etc/prometheus/prometheus.yml",
            ),
        ))

    def step_deploy_exporter(self):
        self.instances.deploy(self.exporter_spec())

    def step_deploy_prometheus(self):
        self.fallback.deploy_with_fallback(
            [self.prometheus_spec()],
            self.health_check(HttpProbe(f"http://127.0.0.1:{PROMETHEUS_PORT}/-/ready")),
            self.deadline,
        )

    def step_deploy_grafana(self):
        self.fallback.deploy_with_fallback(
            [self.grafana_spec()],
            self.health_check(HttpProbe(f"http://127.0.0.1:{GRAFANA_PORT}/api/health")),
            self.deadline,
        )

    def exporter_spec(self) -> ServiceInstanceSpec:
        return ServiceInstanceSpec(
            name=NODE_EXPORTER,
            image=NODE_EXPORTER_IMAGE,
            network=self.ctx.network,
            volumes=(
                VolumeMount(Path("/proc"), "/host/proc", read_only=True),
                VolumeMount(Path("/sys"), "/host/sys", read_only=True),
                VolumeMount(Path("/"), "/rootfs", read_only=True),
            ),
            command=("--path.procfs=/host/proc", "--path.sysfs=/host/sys", "--path.rootfs=/rootfs"),
        )

    def prometheus_spec(self) -> ServiceInstanceSpec:
        return ServiceInstanceSpec(
            name=PROMETHEUS,
            image=PROMETHEUS_IMAGE,
            network=self.ctx.network,
            ports=(PortMapping(PROMETHEUS_PORT, 9090),),
            volumes=(
                VolumeMount(self.prometheus_config.parent, "/etc/prometheus", read_only=True),
                VolumeMount(self.root / "prometheus-data", "/prometheus"),
            ),
            command=(
                "--config.file=/etc/prometheus/prometheus.yml",
                "--storage.tsdb.path=/prometheus",
                "--storage.tsdb.retention.time=15d",
                "--web.enable-lifecycle",
            ),
        )

    def grafana_spec(self) -> ServiceInstanceSpec:
        creds = self.vault.load("monitoring")
        return ServiceInstanceSpec(
            name=GRAFANA,
            image=GRAFANA_IMAGE,
            network=self.ctx.network,
            ports=(PortMapping(GRAFANA_PORT, 3000),),
            volumes=(VolumeMount(self.root / "grafana-data", "/var/lib/grafana"),),
            environment={
                'GF_SECURITY_ADMIN_PASSWORD': creds["GRAFANA_ADMIN_PASSWORD"],
                'GF_USERS_ALLOW_SIGN_UP': "false",
            },
        )

    def readiness_probes(self) -> Dict[str, Probe]:
        return {
            PROMETHEUS: HttpProbe(f"http://127.0.0.1:{PROMETHEUS_PORT}/-/ready"),
            GRAFANA: HttpProbe(f"http://127.0.0.1:{GRAFANA_PORT}/api/health"),
        }

    def repair(self, deadline=None):
        self.instances.remove(NODE_EXPORTER)
        return super().repair(deadline)
