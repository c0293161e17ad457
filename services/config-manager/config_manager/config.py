"""Configuration for the ACL config manager."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SERVICE_ACCOUNT_NAMESPACE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")


def default_namespace() -> str:
    """Namespace of the pod's service account, or "default" outside a cluster."""
    try:
        return SERVICE_ACCOUNT_NAMESPACE.read_text().strip() or "default"
    except OSError:
        return "default"


class Settings(BaseSettings):
    """Config manager settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Settings
    service_name: str = "config-manager"
    log_level: str = "INFO"

    # Source ConfigMap
    configmap_name: str = Field(description="Name of the ConfigMap holding the ACL policy")
    namespace: str = Field(default_factory=default_namespace)

    # Target file
    mount_path: Path = Field(description="Directory the ACL policy file is written to")

    # Managed process
    process_prefix: str = Field(
        default="headscale\0serve\0",
        description="Command line prefix of the process to reload",
    )
    proc_root: Path = Path("/proc")

    # Watch
    watch_timeout_seconds: int = 30
    watch_retry_seconds: float = 5.0
    idle_interval_seconds: float = 1.0

    @field_validator("namespace")
    @classmethod
    def fallback_namespace(cls, value: str) -> str:
        return value or default_namespace()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
