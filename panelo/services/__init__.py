"""Service integrations (container runtime, reverse proxy, backups)."""
