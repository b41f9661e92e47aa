"""Core provisioning primitives."""
