"""Reverse proxy (nginx) configuration set, per-application sites and certificates."""
from panelo.services.proxy.certificates import CertificateManager, needs_certificate
from panelo.services.proxy.sites import (
    NGINX_CONTAINER,
    NGINX_IMAGE,
    ReverseProxySites,
    nginx_check_command,
    nginx_config_set,
    nginx_reload_command,
)

__all__ = [
    'NGINX_CONTAINER',
    'NGINX_IMAGE',
    'CertificateManager',
    'ReverseProxySites',
    'needs_certificate',
    'nginx_check_command',
    'nginx_config_set',
    'nginx_reload_command',
]
