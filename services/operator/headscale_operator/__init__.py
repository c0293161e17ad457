"""Headscale operator - reconciles Headscale, User, PreauthKey and Policy resources."""

__version__ = "0.1.0"
