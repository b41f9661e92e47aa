"""panelo - provisioning toolkit for a self-hosted server panel."""

__version__ = "0.3.0"
