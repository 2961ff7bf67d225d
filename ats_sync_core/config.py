"""
Centralized configuration management for the ATS sync engine.

Configuration is assembled from environment variables into validated
pydantic models:
- Queue connection
- Logging
- Retry, timeout and throttling behavior of the sync engine
- Encryption and OAuth state signing
- Per-provider OAuth client settings and WhatsApp credentials
"""

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import EnvironmentVariable, Limits, LogLevel, Provider, QueueName, Timeouts


def _env(name: EnvironmentVariable, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name.value)
    return value if value else default


class QueueConfig(BaseModel):
    """Queue configuration for Azure Storage Queues."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.AZURE_STORAGE_CONNECTION.value, ""),
        description="Azure Storage connection string",
    )
    sync_queue_name: str = Field(
        default=QueueName.INTEGRATION_SYNC.value, description="Queue receiving sync jobs"
    )
    logs_queue_name: str = Field(default=QueueName.LOGS.value, description="Structured log queue")
    job_attempts: int = Field(
        default=Limits.QUEUE_JOB_ATTEMPTS, description="Delivery attempts advertised on sync jobs"
    )
    job_backoff_ms: int = Field(
        default=Limits.QUEUE_JOB_BACKOFF_MS, description="Initial exponential backoff for sync jobs"
    )
    job_visibility_timeout: int = Field(
        default=Timeouts.QUEUE_JOB_VISIBILITY,
        description="Seconds a received job stays hidden while it is processed",
    )
    receive_batch_size: int = Field(
        default=16, ge=1, le=32, description="Jobs received per poll of the sync queue"
    )

    @property
    def poison_queue_name(self) -> str:
        """Queue receiving jobs that exhausted their attempts."""
        return f"{self.sync_queue_name}-poison"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    enable_logs_queue: bool = Field(
        default=False, description="Ship structured logs to an Azure Storage queue"
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class SyncConfig(BaseModel):
    """Retry, timeout and throttling behavior of outbound syncs."""

    max_attempts: int = Field(
        default=Limits.MAX_RETRY_ATTEMPTS, ge=1, description="Attempts per provider operation"
    )
    base_delay: float = Field(default=1.0, ge=0, description="Base backoff delay in seconds")
    max_jitter: float = Field(default=1.0, ge=0, description="Upper bound of random jitter")
    rate_limit_multiplier: float = Field(
        default=5.0, ge=1, description="Backoff multiplier applied to rate-limit failures"
    )
    request_timeout: float = Field(
        default=Timeouts.EXTERNAL_API_CALL, description="Per-request HTTP timeout in seconds"
    )
    token_refresh_buffer: int = Field(
        default=Timeouts.TOKEN_REFRESH_BUFFER,
        description="Refresh access tokens expiring within this many seconds",
    )
    lock_ttl: int = Field(
        default=Timeouts.SYNC_LOCK_TTL, description="Lifetime of a per-entity sync lease"
    )
    lock_wait: float = Field(
        default=Timeouts.SYNC_LOCK_WAIT, description="How long to wait for a per-entity lock"
    )
    manual_sync_limit: int = Field(default=5, description="Manual syncs allowed per window")
    manual_sync_window: int = Field(default=3600, description="Manual sync window in seconds")


class SecurityConfig(BaseModel):
    """Security-related configuration."""

    encryption_key: Optional[str] = Field(
        default_factory=lambda: _env(EnvironmentVariable.ENCRYPTION_KEY),
        description="Passphrase used to derive credential encryption keys",
    )
    oauth_state_secret: Optional[str] = Field(
        default_factory=lambda: _env(EnvironmentVariable.OAUTH_STATE_SECRET),
        description="Secret used to sign OAuth state values",
    )


class OAuthClientConfig(BaseModel):
    """OAuth client registration for one provider."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)


class ProvidersConfig(BaseModel):
    """OAuth client settings and defaults for every provider."""

    hubspot: OAuthClientConfig = Field(
        default_factory=lambda: OAuthClientConfig(
            client_id=_env(EnvironmentVariable.HUBSPOT_CLIENT_ID),
            client_secret=_env(EnvironmentVariable.HUBSPOT_CLIENT_SECRET),
            redirect_uri=_env(EnvironmentVariable.HUBSPOT_REDIRECT_URI),
        )
    )
    lever: OAuthClientConfig = Field(
        default_factory=lambda: OAuthClientConfig(
            client_id=_env(EnvironmentVariable.LEVER_CLIENT_ID),
            client_secret=_env(EnvironmentVariable.LEVER_CLIENT_SECRET),
            redirect_uri=_env(EnvironmentVariable.LEVER_REDIRECT_URI),
        )
    )
    workday: OAuthClientConfig = Field(
        default_factory=lambda: OAuthClientConfig(
            client_id=_env(EnvironmentVariable.WORKDAY_CLIENT_ID),
            client_secret=_env(EnvironmentVariable.WORKDAY_CLIENT_SECRET),
            redirect_uri=_env(EnvironmentVariable.WORKDAY_REDIRECT_URI),
        )
    )
    bamboohr: OAuthClientConfig = Field(
        default_factory=lambda: OAuthClientConfig(
            client_id=_env(EnvironmentVariable.BAMBOOHR_CLIENT_ID),
            client_secret=_env(EnvironmentVariable.BAMBOOHR_CLIENT_SECRET),
            redirect_uri=_env(EnvironmentVariable.BAMBOOHR_REDIRECT_URI),
        )
    )
    workday_tenant_url: Optional[str] = Field(
        default_factory=lambda: _env(EnvironmentVariable.WORKDAY_TENANT_URL)
    )
    bamboohr_company_domain: Optional[str] = Field(
        default_factory=lambda: _env(EnvironmentVariable.BAMBOOHR_COMPANY_DOMAIN)
    )

    def oauth_client(self, provider: str) -> OAuthClientConfig:
        """Return the OAuth client config for a provider, empty if it has none."""
        value = Provider(provider).value
        return getattr(self, value, None) or OAuthClientConfig()


class WhatsAppConfig(BaseModel):
    """Global WhatsApp Business credentials used when a tenant has none."""

    phone_number_id: Optional[str] = Field(
        default_factory=lambda: _env(EnvironmentVariable.WHATSAPP_PHONE_NUMBER_ID)
    )
    access_token: Optional[str] = Field(
        default_factory=lambda: _env(EnvironmentVariable.WHATSAPP_ACCESS_TOKEN)
    )
    api_version: str = Field(default="v18.0")


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )

    queue: QueueConfig = Field(default_factory=QueueConfig, description="Queue configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    sync: SyncConfig = Field(default_factory=SyncConfig, description="Sync engine configuration")
    security: SecurityConfig = Field(
        default_factory=SecurityConfig, description="Security configuration"
    )
    providers: ProvidersConfig = Field(
        default_factory=ProvidersConfig, description="Provider configuration"
    )
    whatsapp: WhatsAppConfig = Field(
        default_factory=WhatsAppConfig, description="WhatsApp configuration"
    )

    custom: Dict[str, Any] = Field(default_factory=dict, description="Custom configuration values")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
