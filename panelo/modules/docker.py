"""Docker runtime module: host checks, shared network, runtime images."""
from panelo.core.errors import PreflightError
from panelo.core.logger import get_logger
from panelo.models.module import ModuleDescriptor, Verb
from panelo.models.service import InstanceState, InstanceStatus
from panelo.modules.base import PanelModule

logger = get_logger(__name__)

RUNTIME_IMAGES = (
    "node:18-alpine",
    "php:8.2-fpm-alpine",
    "python:3.11-slim",
    "nginx:alpine",
)


class DockerModule(PanelModule):
    """Checks the container runtime and prepares what every other module uses."""

    descriptor = ModuleDescriptor(
        name="docker",
        steps=("preflight", "network", "prefetch"),
        verbs=(Verb.INSTALL, Verb.STATUS, Verb.REPAIR),
        description="Container runtime checks, shared network, runtime images",
    )

    def step_preflight(self):
        self.services.preflight.check(binaries=("docker",))
        version = self.services.preflight.docker_daemon()
        if version is None:
            raise PreflightError("Docker daemon is not answering (is the docker service running?)")
        logger.info(f"✓ Docker daemon {version}")

    def step_network(self):
        self.instances.ensure_network(self.ctx.network)

    def step_prefetch(self):
        results = self.instances.prefetch(RUNTIME_IMAGES)
        failed = [image for image, ok in results.items() if not ok]
        if failed:
            # Runtime images are pulled again on first use; not fatal here
            logger.warning(f"⚠ Could not prefetch: {', '.join(failed)}")

    def status(self):
        version = self.services.preflight.docker_daemon()
        state = InstanceState.RUNNING if version else InstanceState.MISSING
        return [InstanceStatus("docker", state, version is not None, detail=version or "daemon not answering")]

    def repair(self, deadline=None):
        return self.install(deadline)
