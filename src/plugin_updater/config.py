"""Configuration management for the plugin updater."""

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from plugin_updater.constants import (
    DEFAULT_REVISION,
    FETCH_TIMEOUT_SECONDS,
    METRIC_PREFIX,
    SIGNATURE_MARKER,
    UPDATE_COOLDOWN_SECONDS,
    UPDATE_INTERVAL_SECONDS,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Plugin checkout
    plugin_enabled: bool = Field(default=False, description="Enable plugin updates")
    plugin_checkout_path: Path = Field(
        default=Path("/var/lib/agent/plugin"),
        description="Local working copy of the plugin repository",
    )
    plugin_git_remote: str = Field(default="", description="Remote URL of the plugin repository")
    plugin_default_revision: str = Field(
        default=DEFAULT_REVISION,
        description="Revision checked out when the caller supplies none",
    )

    # Signature verification
    plugin_signing_keys: Annotated[
        list[str],
        Field(
            default_factory=list,
            description="Trusted primary keys, each '<base64 ed25519 key> [label]'",
        ),
    ]
    plugin_alt_signing_keys_file: str | None = Field(
        default=None,
        description="Alternate keys file, relative to the working copy",
    )
    plugin_signature_marker: str = Field(
        default=SIGNATURE_MARKER,
        description="Line prefix carrying 'keyid:signature' in commit objects",
    )

    # Timing
    plugin_update_cooldown_seconds: float = Field(default=UPDATE_COOLDOWN_SECONDS, ge=0)
    plugin_fetch_timeout_seconds: float = Field(default=FETCH_TIMEOUT_SECONDS, gt=0)
    update_interval_seconds: float = Field(default=UPDATE_INTERVAL_SECONDS, gt=0)

    # Self-update
    self_update: bool = Field(
        default=False, description="Replace the agent binary from the checkout"
    )
    self_update_binary_name: str | None = Field(
        default=None,
        description="Binary name inside the checkout, defaults to the running executable name",
    )

    # Failure reporting
    transfer_url: str | None = Field(default=None, description="Metric transfer endpoint")
    metric_prefix: str = Field(default=METRIC_PREFIX)
    hostname: str | None = Field(default=None, description="Endpoint name used in reports")

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Log debug-only update events")

    @field_validator("plugin_signature_marker")
    @classmethod
    def _marker_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("plugin_signature_marker must not be blank")
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
