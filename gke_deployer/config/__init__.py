"""Configuration management for the GKE deployer.

This module provides a unified Settings class with flat, environment-driven
fields and grouped views over them.

Usage:
    from gke_deployer.config import settings

    # Access grouped settings
    settings.kubectl.kubectl_path
    settings.verification.timeout_seconds

    # Or the flat fields directly
    settings.kubectl_path
    settings.verify_timeout_seconds
"""

import tempfile

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Import grouped configurations
from .cloud import CloudConfig
from .kubectl import KubectlConfig
from .logging import LoggingConfig
from .verification import VerificationConfig


class Settings(BaseSettings):
    """Deployer settings with environment variable support."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    # kubectl Configuration
    kubectl_path: str = Field(default="kubectl", min_length=1, description="kubectl binary name or path")
    kubectl_timeout_seconds: int = Field(default=300, ge=1, le=7200)
    kubectl_max_output_bytes: int = Field(default=1024 * 1024, ge=1024)
    kubectl_stderr_tail_lines: int = Field(default=20, ge=1, le=1000)
    ephemeral_dir: str | None = Field(
        default=None,
        description="Root directory for per-invocation kubeconfig files (defaults to the system temp dir)",
    )

    # Rollout Verification Configuration
    verify_timeout_seconds: float = Field(default=300.0, gt=0, le=7200)
    verify_poll_interval_seconds: float = Field(default=5.0, gt=0)
    verify_max_poll_interval_seconds: float = Field(default=30.0, gt=0)
    verify_backoff_factor: float = Field(default=1.5)
    verify_request_timeout_seconds: float = Field(default=10.0, gt=0)
    verify_max_concurrency: int = Field(default=4, ge=1, le=64)

    # Google Cloud Configuration
    credentials_dir: str | None = Field(
        default=None,
        description="Directory holding <credentials_id>.json service account keys",
    )
    gcp_scope: str = Field(default="https://www.googleapis.com/auth/cloud-platform")
    default_namespace: str = Field(default="default", min_length=1)

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    log_file: str | None = Field(default=None)
    log_max_size_mb: int = Field(default=100, ge=1)
    log_backup_count: int = Field(default=5, ge=1)
    log_third_party_level: str = Field(default="WARNING")

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @field_validator("verify_backoff_factor")
    @classmethod
    def validate_backoff_factor(cls, v):
        """A factor below 1 would shrink the poll interval."""
        if v < 1.0:
            raise ValueError("verify_backoff_factor must be >= 1.0")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Only json and console renderers exist."""
        if v.lower() not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v.lower()

    @model_validator(mode="after")
    def validate_poll_intervals(self):
        """The cap must not be below the starting interval."""
        if self.verify_max_poll_interval_seconds < self.verify_poll_interval_seconds:
            raise ValueError("verify_max_poll_interval_seconds must be >= verify_poll_interval_seconds")
        return self

    # ========================================================================
    # GROUPED CONFIG ACCESS
    # ========================================================================

    @property
    def kubectl(self) -> KubectlConfig:
        """Access kubectl configuration group."""
        return KubectlConfig(
            kubectl_path=self.kubectl_path,
            timeout_seconds=self.kubectl_timeout_seconds,
            max_output_bytes=self.kubectl_max_output_bytes,
            stderr_tail_lines=self.kubectl_stderr_tail_lines,
            ephemeral_dir=self.get_ephemeral_dir(),
        )

    @property
    def verification(self) -> VerificationConfig:
        """Access rollout verification configuration group."""
        return VerificationConfig(
            timeout_seconds=self.verify_timeout_seconds,
            poll_interval_seconds=self.verify_poll_interval_seconds,
            max_poll_interval_seconds=self.verify_max_poll_interval_seconds,
            backoff_factor=self.verify_backoff_factor,
            request_timeout_seconds=self.verify_request_timeout_seconds,
            max_concurrency=self.verify_max_concurrency,
        )

    @property
    def cloud(self) -> CloudConfig:
        """Access Google Cloud configuration group."""
        return CloudConfig(
            credentials_dir=self.credentials_dir,
            scope=self.gcp_scope,
            default_namespace=self.default_namespace,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(
            log_level=self.log_level,
            log_format=self.log_format,
            log_file=self.log_file,
            log_max_size_mb=self.log_max_size_mb,
            log_backup_count=self.log_backup_count,
            log_third_party_level=self.log_third_party_level,
        )

    # ========================================================================
    # HELPER METHODS
    # ========================================================================

    def get_ephemeral_dir(self) -> str:
        """Get the root directory for ephemeral kubeconfig files."""
        return self.ephemeral_dir or tempfile.gettempdir()


# Global settings instance
settings = Settings()

__all__ = [
    "Settings",
    "settings",
    # Grouped configs
    "CloudConfig",
    "KubectlConfig",
    "LoggingConfig",
    "VerificationConfig",
]
