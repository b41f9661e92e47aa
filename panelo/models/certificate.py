"""TLS certificate models."""
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class CertificateInfo:
    """A Let's Encrypt certificate found in the certificate store.

    Attributes:
        domain: Certificate name (the domain it was issued for)
        path: Host path of ``fullchain.pem``
        expires: Expiry instant (UTC), None if it could not be read
        served: True if the proxy terminates HTTPS with it
    """
    domain: str
    path: Path
    expires: Optional[datetime] = None
    served: bool = False

    def days_left(self, now: datetime) -> Optional[int]:
        if self.expires is None:
            return None
        return (self.expires - now).days

    def expired(self, now: datetime) -> bool:
        return self.expires is not None and self.expires <= now
