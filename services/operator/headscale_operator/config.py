"""Configuration for the Headscale operator."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .crds import DEFAULT_HEADSCALE_IMAGE


class Settings(BaseSettings):
    """Operator settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Settings
    service_name: str = "headscale-operator"
    version: str = "0.1.0"
    log_level: str = "INFO"

    # Images
    config_manager_image: str = Field(
        default="ghcr.io/juliamertz/headscale-config-manager:latest",
        description="Image of the ACL config-manager sidecar",
    )
    headscale_image: str = DEFAULT_HEADSCALE_IMAGE
    tailscale_image: str = Field(
        default="ghcr.io/tailscale/tailscale:latest",
        description="Default image of injected Tailscale sidecars",
    )

    # Kubernetes
    watch_namespace: Optional[str] = Field(
        default=None,
        description="Namespace to watch (empty for all namespaces)",
    )
    kubeconfig_path: Optional[str] = None
    kube_context: Optional[str] = None

    # Reconciliation
    reconcile_workers: int = 4
    reconcile_max_attempts: int = 5
    reconcile_backoff_min_seconds: float = 1.0
    reconcile_backoff_max_seconds: float = 60.0
    resync_interval_seconds: int = 300


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
