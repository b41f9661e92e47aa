"""Managed service instances on the local Docker engine."""
from panelo.services.docker.fallback import FallbackResult, FallbackSelector
from panelo.services.docker.manager import ServiceInstanceManager

__all__ = ['FallbackResult', 'FallbackSelector', 'ServiceInstanceManager']
