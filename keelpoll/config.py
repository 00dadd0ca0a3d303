"""Configuration loading for the keelpoll trigger.

This module provides centralized configuration management:
- Load settings from environment variables and .env files
- Validate configuration using pydantic
- Provide typed access to all settings
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from keelpoll.core.policy import POLICY_LABEL, POLL_SCHEDULE_LABEL, TRIGGER_LABEL
from keelpoll.core.schedule import DEFAULT_POLL_SCHEDULE, ScheduleError, validate_schedule


class Settings(BaseSettings):
    """Application configuration loaded from environment.

    Uses pydantic-settings for environment variable handling with
    .env file support via python-dotenv.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Scan loop configuration
    scan_interval_seconds: int = Field(
        default=55,
        description="Interval between deployment scans in seconds",
    )
    scan_timeout_seconds: float | None = Field(
        default=None,
        description="Upper bound for a single scan in seconds (unset = unbounded)",
    )
    default_poll_schedule: str = Field(
        default=DEFAULT_POLL_SCHEDULE,
        description="Poll schedule used when a deployment has no schedule label",
    )

    # Label keys
    policy_label: str = Field(
        default=POLICY_LABEL,
        description="Label selecting the update policy",
    )
    trigger_label: str = Field(
        default=TRIGGER_LABEL,
        description="Label selecting the trigger type",
    )
    poll_schedule_label: str = Field(
        default=POLL_SCHEDULE_LABEL,
        description="Label overriding the poll schedule per deployment",
    )

    # Cluster access configuration
    cluster_backend: Literal["kubernetes"] = Field(
        default="kubernetes",
        description="Cluster accessor backend type",
    )
    kube_in_cluster: bool | None = Field(
        default=None,
        description="Use in-cluster credentials (unset = try in-cluster, then kubeconfig)",
    )
    kube_config_path: str | None = Field(
        default=None,
        description="Path to kubeconfig file",
    )
    kube_context: str | None = Field(
        default=None,
        description="Kubeconfig context to use",
    )

    # Watcher configuration
    watcher_backend: Literal["memory", "http"] = Field(
        default="memory",
        description="Watcher backend type",
    )
    watcher_url: str = Field(
        default="http://localhost:9300",
        description="Watcher service base URL (http backend)",
    )
    watcher_token: str = Field(
        default="",
        description="Bearer token for the watcher service",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    # Run mode
    run_mode: Literal["daemon", "once", "webhook"] = Field(
        default="daemon",
        description="Run mode",
    )

    # HTTP server configuration
    webhook_host: str = Field(
        default="0.0.0.0",
        description="Host to listen on for the HTTP server",
    )
    webhook_port: int = Field(
        default=8080,
        description="Port to listen on for the HTTP server",
    )
    webhook_api_key: str = Field(
        default="",
        description="API key for HTTP endpoint authentication",
    )
    webhook_require_auth: bool = Field(
        default=False,
        description="Require API key authentication for /api endpoints",
    )

    # Development
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging",
    )

    @field_validator("scan_interval_seconds")
    @classmethod
    def validate_scan_interval(cls, v: int) -> int:
        """Ensure scan interval is positive."""
        if v <= 0:
            raise ValueError("scan_interval_seconds must be positive")
        return v

    @field_validator("scan_timeout_seconds")
    @classmethod
    def validate_scan_timeout(cls, v: float | None) -> float | None:
        """Ensure scan timeout, when set, is positive."""
        if v is not None and v <= 0:
            raise ValueError("scan_timeout_seconds must be positive")
        return v

    @field_validator("default_poll_schedule")
    @classmethod
    def validate_default_schedule(cls, v: str) -> str:
        """Reject a default schedule every deployment would fail on."""
        try:
            validate_schedule(v)
        except ScheduleError as e:
            raise ValueError(str(e)) from e
        return v

    @field_validator("webhook_port")
    @classmethod
    def validate_webhook_port(cls, v: int) -> int:
        """Ensure webhook port is in valid range."""
        if v <= 0 or v > 65535:
            raise ValueError("webhook_port must be between 1 and 65535")
        return v


def load_settings(env_file: str | None = None) -> Settings:
    """Load application settings from environment.

    Args:
        env_file: Optional path to .env file. If not provided,
                 uses the default .env in the current directory.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If settings validation fails.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = ["Settings", "load_settings"]
