"""Headscale ACL config manager - syncs the policy file from a ConfigMap."""

__version__ = "0.1.0"
