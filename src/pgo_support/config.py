"""Configuration and environment for the support export tool."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Export settings loaded from environment and .env."""

    model_config = SettingsConfigDict(
        env_prefix="PGO_SUPPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Kubernetes
    kubeconfig: Path | None = Field(
        default=None,
        description="Path to kubeconfig; uses KUBECONFIG env or default location if unset",
    )
    context: str | None = Field(default=None, description="Kubernetes context to use")
    namespace: str | None = Field(
        default=None,
        description="Namespace of the PostgresCluster; falls back to the kubeconfig context namespace",
    )

    # Collection
    pg_logs_count: int = Field(
        default=2,
        ge=1,
        description="Number of log files to save per log directory",
    )
    monitoring_namespace: str | None = Field(
        default=None,
        description="Namespace of the monitoring stack; defaults to the cluster namespace",
    )
    operator_namespace: str | None = Field(
        default=None,
        description="Namespace of the operator; defaults to the cluster namespace",
    )
    archive_prefix: str = Field(
        default="crunchy",
        pattern=r"^[A-Za-z0-9_-]+$",
        description="Prefix of the archive file name",
    )
    command_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Deadline in seconds for the plugin list and PGUpgrade lookups",
    )


def get_settings() -> Settings:
    """Return validated settings instance."""
    return Settings()
