"""HTTPS module: Let's Encrypt certificates terminated by the proxy."""
from pathlib import Path
from typing import List, Optional

from panelo.core.errors import ValidationError
from panelo.core.logger import get_logger
from panelo.models.certificate import CertificateInfo
from panelo.models.config_template import ApplyResult
from panelo.models.module import ModuleDescriptor, Verb
from panelo.models.reconcile import ReconciliationTarget
from panelo.models.service import InstanceState, InstanceStatus
from panelo.modules.base import PanelModule
from panelo.services.proxy.certificates import CertificateManager, needs_certificate
from panelo.services.proxy.sites import ReverseProxySites

logger = get_logger(__name__)


class SslModule(PanelModule):
    """Certificate for the panel domain plus ``ssl add`` for application domains.

    The panel step is skipped for names no public CA will sign (localhost,
    IP addresses), matching a panel reached by address only.
    """

    descriptor = ModuleDescriptor(
        name="ssl",
        steps=("directories", "certificate", "site"),
        depends_on=("nginx",),
        verbs=(Verb.INSTALL, Verb.STATUS, Verb.REPAIR),
        extra_verbs=("ssl add", "ssl remove", "ssl list", "ssl renew"),
        description="Let's Encrypt certificates with HTTPS termination in the proxy",
    )

    staging = False

    @property
    def webroot(self) -> Path:
        return self.ctx.data_root / "www"

    @property
    def certificates(self) -> CertificateManager:
        return CertificateManager(self.runner, self.ctx.letsencrypt_dir, self.webroot, staging=self.staging)

    @property
    def sites(self) -> ReverseProxySites:
        return ReverseProxySites(self.ctx, self.applier, self.instances)

    def step_directories(self):
        self.ensure_dirs([
            ReconciliationTarget(self.ctx.letsencrypt_dir, mode=0o755),
            ReconciliationTarget(self.webroot / ".well-known" / "acme-challenge", mode=0o755),
        ])

    def step_certificate(self):
        if not needs_certificate(self.ctx.domain):
            logger.info(f"{self.ctx.domain} is not a public name; skipping certificate")
            return
        self.certificates.obtain(self.ctx.domain, self.ctx.email)

    def step_site(self):
        if not needs_certificate(self.ctx.domain):
            return
        _require_applied(self.sites.enable_ssl(self.ctx.domain))

    def repair(self, deadline=None):
        return self.install(deadline)

    # ==================== Verbs ====================

    def add(self, domain: str, email: Optional[str] = None) -> ApplyResult:
        """Obtain a certificate for ``domain`` and serve it over HTTPS."""
        sites = self.sites
        if domain not in sites.served_domains():
            logger.warning(f"⚠ No HTTP site serves {domain}; HTTPS requests will be refused until one does")
        self.certificates.obtain(domain, email or self.ctx.email)
        return sites.enable_ssl(domain)

    def remove(self, domain: str) -> ApplyResult:
        """Stop serving HTTPS for ``domain`` and delete its certificate.

        The certificate is kept when the proxy configuration still needs it
        (removal rejected by ``nginx -t``).
        """
        result = self.sites.disable_ssl(domain)
        if result.ok:
            self.certificates.delete(domain)
        return result

    def list_certificates(self) -> List[CertificateInfo]:
        served = set(self.sites.ssl_domains())
        return [
            CertificateInfo(info.domain, info.path, info.expires, info.domain in served)
            for info in self.certificates.list_certificates()
        ]

    def renew(self, domain: Optional[str] = None, force: bool = False) -> List[str]:
        """Renew due certificates and reload the proxy if any changed."""
        renewed = self.certificates.renew(domain, force)
        if renewed:
            reload = self.sites.reload_command()
            if reload is not None:
                self.runner.run(reload, check=True)
                logger.info("✓ Proxy reloaded with renewed certificates")
        return renewed

    def status(self) -> List[InstanceStatus]:
        now = self.certificates.now()
        statuses = []
        for info in self.list_certificates():
            days = info.days_left(now)
            detail = "expiry unknown" if days is None else f"expires {info.expires:%Y-%m-%d} ({days} days)"
            state = InstanceState.RUNNING if info.served else InstanceState.MISSING
            statuses.append(InstanceStatus(info.domain, state, info.served and not info.expired(now), detail))
        return statuses


def _require_applied(result: ApplyResult):
    if not result.ok:
        raise ValidationError(f"{result.live_path} rejected by validator:\n{result.diagnostics}")
