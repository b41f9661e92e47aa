"""Let's Encrypt certificates through certbot's webroot challenge.

certbot runs in a throwaway container sharing the host's certificate store
and the proxy's webroot; the proxy already answers
``/.well-known/acme-challenge/`` for every host name, so no running site is
needed for issuance.
"""
import ipaddress
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from panelo.core.command import Command, CommandRunner, docker
from panelo.core.errors import PaneloError, ValidationError
from panelo.core.logger import get_logger
from panelo.models.certificate import CertificateInfo
from panelo.services.proxy.sites import check_domain

logger = get_logger(__name__)

CERTBOT_IMAGE = "certbot/certbot"
CERTBOT_TIMEOUT = 300
WEBROOT = "/var/www/html"

EMAIL = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
ENDDATE_FORMAT = "%b %d %H:%M:%S %Y %Z"


def is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def needs_certificate(domain: str) -> bool:
    """False for names Let's Encrypt will not issue for (IP addresses, localhost)."""
    return not (is_ip_address(domain) or domain == "localhost" or "." not in domain)


def check_email(email: str):
    if not EMAIL.match(email or ""):
        raise ValidationError(f"Invalid email: {email}")


class CertificateManager:
    """Obtain, renew, delete and inspect certificates in one store."""

    def __init__(
        self,
        runner: CommandRunner,
        letsencrypt_dir: Path,
        webroot: Path,
        image: str = CERTBOT_IMAGE,
        staging: bool = False,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """Initialize manager.

        Args:
            runner: Command executor
            letsencrypt_dir: Host certificate store (``/etc/letsencrypt``)
            webroot: Host directory the proxy serves challenges from
            image: certbot image
            staging: Use the Let's Encrypt staging CA (untrusted test certificates)
            now: Current UTC time (injectable for tests)
        """
        self.runner = runner
        self.letsencrypt_dir = Path(letsencrypt_dir)
        self.webroot = Path(webroot)
        self.image = image
        self.staging = staging
        self.now = now

    def certbot(self, *args) -> Command:
        """certbot invocation in a throwaway container."""
        return docker(
            "run", "--rm",
            "-v", f"{self.letsencrypt_dir}:/etc/letsencrypt",
            "-v", f"{self.webroot}:{WEBROOT}",
            self.image, *args,
            timeout=CERTBOT_TIMEOUT,
        )

    def certificate_path(self, domain: str) -> Path:
        return self.letsencrypt_dir / "live" / domain / "fullchain.pem"

    def has_certificate(self, domain: str) -> bool:
        return self.certificate_path(domain).is_file()

    def obtain(self, domain: str, email: str) -> bool:
        """Request a certificate for ``domain`` unless one is already stored.

        Returns:
            True if a certificate was issued, False if one already existed

        Raises:
            ValidationError: If the domain or email is unusable
            CommandError: If certbot fails (DNS not pointing here, rate limits)
        """
        check_domain(domain)
        if not needs_certificate(domain):
            raise ValidationError(f"Let's Encrypt does not issue certificates for {domain}")
        check_email(email)

        if self.has_certificate(domain):
            logger.info(f"Certificate for {domain} already present")
            return False

        args = [
            "certonly", "--webroot", "-w", WEBROOT,
            "--email", email, "--agree-tos", "--non-interactive",
            "-d", domain,
        ]
        if self.staging:
            args.append("--staging")

        logger.info(f"Requesting certificate for {domain}")
        self.runner.run(self.certbot(*args), check=True)

        if not self.runner.mock and not self.has_certificate(domain):
            raise PaneloError(f"certbot finished but no certificate was written to {self.certificate_path(domain)}")
        logger.info(f"✓ Certificate issued for {domain}")
        return True

    def delete(self, domain: str) -> bool:
        """Remove the certificate from the store (``certbot delete``)."""
        check_domain(domain)
        if not self.has_certificate(domain):
            return False
        self.runner.run(self.certbot("delete", "--cert-name", domain, "--non-interactive"), check=True)
        logger.info(f"✓ Deleted certificate for {domain}")
        return True

    def renew(self, domain: Optional[str] = None, force: bool = False) -> List[str]:
        """Renew certificates close to expiry (or all of them with ``force``).

        Returns:
            Domains whose certificate changed
        """
        args = ["renew", "--non-interactive"]
        if domain:
            check_domain(domain)
            args.extend(["--cert-name", domain])
        if force:
            args.append("--force-renewal")

        before = self._fingerprints()
        self.runner.run(self.certbot(*args), check=True)
        after = self._fingerprints()

        renewed = sorted(d for d, stamp in after.items() if before.get(d) != stamp)
        if renewed:
            logger.info(f"✓ Renewed: {', '.join(renewed)}")
        else:
            logger.info("No certificate needed renewal")
        return renewed

    def list_certificates(self) -> List[CertificateInfo]:
        live = self.letsencrypt_dir / "live"
        if not live.is_dir():
            return []
        return [
            CertificateInfo(path.parent.name, path, self.expiry(path))
            for path in sorted(live.glob("*/fullchain.pem"))
        ]

    def expiry(self, path: Path) -> Optional[datetime]:
        """``notAfter`` of a PEM certificate, read with openssl."""
        result = self.runner.run(Command.of("openssl", "x509", "-enddate", "-noout", "-in", path, timeout=30))
        if not result.ok:
            logger.warning(f"⚠ Could not read {path}: {result.output}")
            return None
        _, _, raw = result.stdout.strip().partition("=")
        try:
            return datetime.strptime(raw.strip(), ENDDATE_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            logger.warning(f"⚠ Unrecognized expiry in {path}: {raw!r}")
            return None

    def _fingerprints(self) -> Dict[str, float]:
        live = self.letsencrypt_dir / "live"
        if not live.is_dir():
            return {}
        return {path.parent.name: path.stat().st_mtime for path in live.glob("*/fullchain.pem")}
