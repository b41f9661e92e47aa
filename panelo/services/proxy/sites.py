"""Per-application proxy sites.

The proxy reads ``nginx.conf`` plus every file under ``conf.d/``, so a site
file is always validated together with the rest of the set: the check runs
``nginx -t`` in a throwaway container that mounts a scratch copy of the set
holding the candidate file.
"""
import re
from pathlib import Path
from typing import List, Optional

from panelo.core.command import Command, docker
from panelo.core.config import ProvisioningContext
from panelo.core.config_applier import ConfigApplier
from panelo.core.errors import ValidationError
from panelo.core.logger import get_logger
from panelo.models.config_template import CONFIG_ROOT_TOKEN, ApplyResult, ConfigSet, ConfigTemplate
from panelo.models.service import InstanceState

logger = get_logger(__name__)

NGINX_CONTAINER = "server-panel-nginx"
NGINX_IMAGE = "nginx:alpine"
PANEL_SITE = "panel"
SSL_PREFIX = "ssl."

# The host nginx directory is mounted here; conf.d is mounted at its usual place
MAIN_CONF_DIR = "/etc/nginx/panelo"
MAIN_CONF = f"{MAIN_CONF_DIR}/nginx.conf"

SITE_NAME = re.compile(r'^[a-z0-9][a-z0-9-]{0,62}$')
DOMAIN_NAME = re.compile(r'^(?=.{1,253}$)([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)*[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$')
SERVER_NAME = re.compile(r'^\s*server_name\s+([^;]+);', re.MULTILINE)


def nginx_config_set(nginx_dir: Path) -> ConfigSet:
    return ConfigSet(Path(nginx_dir), ("nginx.conf", "conf.d"))


def nginx_check_command(
    root=CONFIG_ROOT_TOKEN,
    letsencrypt_dir: Path = Path("/etc/letsencrypt"),
    image: str = NGINX_IMAGE,
) -> Command:
    """``nginx -t`` against a configuration set, in a throwaway container.

    Args:
        root: Host directory holding ``nginx.conf`` and ``conf.d/`` (by
            default the scratch copy the applier validates)
        letsencrypt_dir: Certificates referenced by SSL sites
    """
    return docker(
        "run", "--rm", "--network", "host",
        "-v", f"{root}:{MAIN_CONF_DIR}:ro",
        "-v", f"{root}/conf.d:/etc/nginx/conf.d:ro",
        "-v", f"{letsencrypt_dir}:/etc/letsencrypt:ro",
        image, "nginx", "-t", "-c", MAIN_CONF,
        timeout=120,
    )


def nginx_reload_command(container: str = NGINX_CONTAINER) -> Command:
    return docker("exec", container, "nginx", "-c", MAIN_CONF, "-s", "reload", timeout=60)


class ReverseProxySites:
    """Add and remove application sites in the proxy configuration set."""

    def __init__(self, ctx: ProvisioningContext, applier: ConfigApplier, instances=None):
        """Initialize site manager.

        Args:
            ctx: Provisioning context (nginx directory)
            applier: Writer of live configuration
            instances: ServiceInstanceManager; when given, reload is only
                signalled if the proxy is running
        """
        self.ctx = ctx
        self.applier = applier
        self.instances = instances

    @property
    def conf_dir(self) -> Path:
        return self.ctx.nginx_dir / "conf.d"

    @property
    def config_set(self) -> ConfigSet:
        return nginx_config_set(self.ctx.nginx_dir)

    @property
    def check_command(self) -> Command:
        return nginx_check_command(letsencrypt_dir=self.ctx.letsencrypt_dir)

    def path_for(self, name: str) -> Path:
        return self.conf_dir / f"{name}.conf"

    def ssl_path_for(self, domain: str) -> Path:
        return self.conf_dir / f"{SSL_PREFIX}{domain}.conf"

    def add(self, name: str, domain: str, port: int) -> ApplyResult:
        """Proxy ``domain`` to an application listening on ``127.0.0.1:port``.

        Raises:
            ValidationError: If the name, domain or port is malformed
        """
        _check_site_name(name)
        check_domain(domain)
        if not 1 <= int(port) <= 65535:
            raise ValidationError(f"Invalid port: {port}")

        logger.info(f"Adding proxy site {name} for {domain} -> 127.0.0.1:{port}")
        result = self._apply("app-site.conf", self.path_for(name), {'APP_NAME': name, 'DOMAIN': domain, 'PORT': str(port)})
        if result.ok:
            logger.info(f"✓ Proxy site {name} is {result.status.value}")
        return result

    def remove(self, name: str) -> ApplyResult:
        """Remove a site; kept if the remaining set would fail ``nginx -t``."""
        _check_site_name(name)
        logger.info(f"Removing proxy site {name}")
        return self._remove(self.path_for(name))

    def list_sites(self) -> List[str]:
        if not self.conf_dir.is_dir():
            return []
        return sorted(
            p.stem for p in self.conf_dir.glob("*.conf")
            if p.stem != PANEL_SITE and not p.stem.startswith(SSL_PREFIX)
        )

    def served_domains(self) -> List[str]:
        """Domains named by a plain-HTTP server block in the set."""
        domains = set()
        if not self.conf_dir.is_dir():
            return []
        for path in self.conf_dir.glob("*.conf"):
            if path.stem.startswith(SSL_PREFIX):
                continue
            for names in SERVER_NAME.findall(path.read_text()):
                domains.update(names.split())
        return sorted(domains)

    # ==================== TLS ====================

    def enable_ssl(self, domain: str) -> ApplyResult:
        """Terminate TLS for ``domain`` with its Let's Encrypt certificate."""
        check_domain(domain)
        logger.info(f"Enabling HTTPS for {domain}")
        return self._apply("ssl-site.conf", self.ssl_path_for(domain), {'DOMAIN': domain})

    def disable_ssl(self, domain: str) -> ApplyResult:
        check_domain(domain)
        logger.info(f"Disabling HTTPS for {domain}")
        return self._remove(self.ssl_path_for(domain))

    def ssl_domains(self) -> List[str]:
        if not self.conf_dir.is_dir():
            return []
        return sorted(p.stem[len(SSL_PREFIX):] for p in self.conf_dir.glob(f"{SSL_PREFIX}*.conf"))

    def reload_command(self) -> Optional[Command]:
        """Reload signal for the proxy, or None while it isn't running."""
        if self.instances is not None and self.instances.state(NGINX_CONTAINER) is not InstanceState.RUNNING:
            logger.debug(f"{NGINX_CONTAINER} not running; skipping reload")
            return None
        return nginx_reload_command()

    def _apply(self, template: str, live_path: Path, context) -> ApplyResult:
        return self.applier.apply(ConfigTemplate(
            template=template,
            live_path=live_path,
            context=context,
            validator=self.check_command,
            reload=self.reload_command(),
            config_set=self.config_set,
        ))

    def _remove(self, live_path: Path) -> ApplyResult:
        return self.applier.remove(
            live_path,
            validator=self.check_command,
            reload=self.reload_command(),
            config_set=self.config_set,
        )


def check_domain(domain: str):
    if not DOMAIN_NAME.match(domain):
        raise ValidationError(f"Invalid domain: {domain}")


def _check_site_name(name: str):
    if not SITE_NAME.match(name):
        raise ValidationError(f"Invalid site name: {name!r} (lowercase letters, digits and dashes)")
    if name == PANEL_SITE:
        raise ValidationError(f"'{PANEL_SITE}' is reserved for the panel itself")
