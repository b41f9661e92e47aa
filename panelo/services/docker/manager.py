"""Service instance lifecycle (deploy, start, stop, remove, logs)."""
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence

from panelo.core.command import Command, CommandResult, CommandRunner, docker
from panelo.core.errors import CommandError
from panelo.core.logger import get_logger
from panelo.core.retry import retry
from panelo.models.service import InstanceHandle, InstanceState, ServiceInstanceSpec

logger = get_logger(__name__)

# Seconds allowed for read-only runtime queries (inspect, logs)
QUERY_TIMEOUT = 30


class ServiceInstanceManager:
    """Single owner of the named instance namespace.

    Deploy is replace-not-update: an existing instance with the same name is
    stopped and removed before the new one starts, so every deploy begins
    from the declared spec rather than from whatever drifted before. The
    manager knows nothing about readiness; that is the HealthGate's job.
    """

    def __init__(
        self,
        runner: CommandRunner,
        network: str = "server-panel",
        pull_attempts: int = 3,
        pull_delay: float = 5.0,
        sleep=time.sleep,
    ):
        """Initialize manager.

        Args:
            runner: Command executor
            network: Default shared network for instances
            pull_attempts: Capped attempts per image pull
            pull_delay: Initial delay between pull attempts
            sleep: Sleep function used between pull attempts
        """
        self.runner = runner
        self.network = network
        self.pull_attempts = pull_attempts
        self.pull_delay = pull_delay
        self.sleep = sleep

    @property
    def mock(self) -> bool:
        return self.runner.mock

    def build_run_command(self, spec: ServiceInstanceSpec) -> Command:
        """Translate a spec into its ``docker run`` invocation."""
        args: List[str] = ["run", "-d", "--name", spec.name]

        network = spec.network or self.network
        if network:
            args.extend(["--network", network])

        for port in spec.ports:
            args.extend(["-p", port.to_arg()])

        for key, value in spec.environment.items():
            args.extend(["-e", f"{key}={value}"])

        for volume in spec.volumes:
            args.extend(["-v", volume.to_arg()])

        args.extend(["--restart", spec.restart_policy.value])
        args.extend(spec.extra_args)
        args.append(spec.image)
        args.extend(spec.command)

        return docker(*args)

    def ensure_network(self, name: Optional[str] = None) -> bool:
        """Create the shared network unless it already exists.

        Returns:
            True if the network was created, False if it already existed
        """
        name = name or self.network
        if self.runner.run(docker("network", "inspect", name)).ok and not self.mock:
            logger.debug(f"Network {name} already exists")
            return False

        self.runner.run(docker("network", "create", name), check=True)
        logger.info(f"✓ Created network: {name}")
        return True

    def deploy(self, spec: ServiceInstanceSpec) -> InstanceHandle:
        """Replace any instance named ``spec.name`` with a fresh one.

        Raises:
            CommandError: If the runtime refuses to start the instance
        """
        self.ensure_network(spec.network or self.network)
        self.remove(spec.name)

        logger.info(f"Starting {spec.name} from {spec.image}")
        result = self.runner.run(self.build_run_command(spec), check=True)

        container_id = result.stdout.strip()[:12]
        logger.info(f"✓ Deployed {spec.name} ({spec.image})")
        return InstanceHandle(spec.name, spec.image, container_id)

    def state(self, name: str) -> InstanceState:
        """Process-level state of an instance (MISSING if it doesn't exist)."""
        if self.mock:
            return InstanceState.RUNNING

        result = self.runner.run(docker("inspect", "--format", "{{.State.Status}}", name, timeout=QUERY_TIMEOUT))
        if not result.ok:
            return InstanceState.MISSING
        return InstanceState.parse(result.stdout)

    def exists(self, name: str) -> bool:
        return self.state(name) is not InstanceState.MISSING

    def start(self, name: str) -> bool:
        """Start a stopped instance; a running instance is left alone.

        Returns:
            False if no instance with that name exists
        """
        state = self.state(name)
        if state is InstanceState.MISSING:
            logger.warning(f"Cannot start {name}: no such instance")
            return False
        if state is InstanceState.RUNNING:
            logger.debug(f"{name} already running")
            return True

        self.runner.run(docker("start", name), check=True)
        logger.info(f"✓ Started {name}")
        return True

    def stop(self, name: str, timeout: int = 30) -> bool:
        """Stop an instance; stopping a missing or stopped instance succeeds."""
        state = self.state(name)
        if state is InstanceState.MISSING:
            return True
        if state in (InstanceState.EXITED, InstanceState.DEAD, InstanceState.CREATED):
            return True

        self.runner.run(docker("stop", "-t", timeout, name), check=True)
        logger.info(f"Stopped {name}")
        return True

    def remove(self, name: str) -> bool:
        """Stop and remove an instance; removing a missing instance succeeds.

        Returns:
            True if an instance was removed, False if none existed
        """
        if self.state(name) is InstanceState.MISSING:
            return False

        self.runner.run(docker("stop", name))
        result = self.runner.run(docker("rm", "-f", name))
        if not result.ok and self.state(name) is not InstanceState.MISSING:
            result.check()

        logger.info(f"Removed existing instance {name}")
        return True

    def logs(self, name: str, tail: int = 20) -> str:
        """Last ``tail`` lines of instance output ("" if it doesn't exist)."""
        result = self.runner.run(docker("logs", "--tail", tail, name, timeout=QUERY_TIMEOUT))
        if not result.ok:
            return ""
        return result.output

    def exec(
        self,
        name: str,
        argv: Sequence[str],
        input: Optional[str] = None,
        check: bool = False,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run a command inside a running instance.

        Args:
            timeout: Seconds before the command is killed and reported as
                rc 124 (None waits indefinitely, e.g. for restores)
        """
        args = ["exec"]
        if input is not None:
            args.append("-i")
        for key, value in (env or {}).items():
            args.extend(["-e", f"{key}={value}"])
        args.append(name)
        args.extend(argv)
        return self.runner.run(docker(*args, input=input, timeout=timeout), check=check)

    def pull(self, image: str) -> CommandResult:
        """Pull an image, retrying transient failures a capped number of times."""

        @retry(
            max_attempts=self.pull_attempts,
            delay=self.pull_delay,
            exceptions=(CommandError,),
            sleep=self.sleep,
            label=f"docker pull {image}",
        )
        def _pull():
            return self.runner.run(docker("pull", image), check=True)

        return _pull()

    def prefetch(self, images: Iterable[str], max_workers: int = 4) -> Dict[str, bool]:
        """Pull independent images in parallel and wait for all of them.

        Returns:
            Mapping of image -> pulled successfully
        """
        images = list(dict.fromkeys(images))
        if not images:
            return {}

        def _fetch(image: str) -> bool:
            try:
                self.pull(image)
                return True
            except CommandError as e:
                logger.error(f"✗ Could not pull {image}: {e}")
                return False

        with ThreadPoolExecutor(max_workers=min(max_workers, len(images))) as pool:
            outcomes = list(pool.map(_fetch, images))

        results = dict(zip(images, outcomes))
        pulled = sum(outcomes)
        logger.info(f"Prefetched {pulled}/{len(images)} image(s)")
        return results

    def list_instances(self, prefix: str) -> List[Dict[str, str]]:
        """Instances whose name starts with ``prefix``."""
        result = self.runner.run(
            docker("ps", "-a", "--filter", f"name={prefix}", "--format", "{{.Names}}\t{{.Image}}\t{{.Status}}")
        )
        instances = []
        for line in result.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) < 3 or not parts[0].startswith(prefix):
                continue
            instances.append({'name': parts[0], 'image': parts[1], 'status': parts[2]})
        return instances
