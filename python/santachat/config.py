"""Application settings loaded from environment variables.

Environment Configuration:
    SANTACHAT_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Connection string for the durable message store (optional;
        endpoints needing the store answer 503 when it is missing)

Auth Configuration (required in staging/prod):
    AUTH_JWKS_URL: Full URL to the identity provider's JWKS endpoint
    AUTH_ISSUER: Expected JWT issuer (trailing slash stripped)
    AUTH_AUDIENCES: Comma-separated list of allowed audiences

Client Configuration:
    Client-resident components (outbox, drainer, read-state synchronizer) read
    ClientSettings, prefixed SANTACHAT_CLIENT_.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Server configuration.

    Validation rules:
    - AUTH_JWKS_URL, AUTH_ISSUER, AUTH_AUDIENCES are required in staging and prod
    - DATABASE_URL is required in staging and prod
    """

    santachat_env: Environment = Field(default=Environment.LOCAL, alias="SANTACHAT_ENV")
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    auth_jwks_url: str | None = Field(default=None, alias="AUTH_JWKS_URL")
    auth_issuer: str | None = Field(default=None, alias="AUTH_ISSUER")
    auth_audiences: str | None = Field(default=None, alias="AUTH_AUDIENCES")

    # Send endpoint limits
    max_message_length: int = Field(default=4000, alias="MAX_MESSAGE_LENGTH")

    # Idempotent writer retry policy (linear backoff: delay * attempt)
    message_write_max_attempts: int = Field(default=3, alias="MESSAGE_WRITE_MAX_ATTEMPTS")
    message_write_retry_delay_ms: int = Field(default=120, alias="MESSAGE_WRITE_RETRY_DELAY_MS")

    # Notification webhook (logged only when unset)
    push_webhook_url: str | None = Field(default=None, alias="PUSH_WEBHOOK_URL")
    push_timeout_s: float = Field(default=5.0, alias="PUSH_TIMEOUT_S")

    # Never move a durable watermark backward
    last_read_guard_monotonic: bool = Field(default=True, alias="LAST_READ_GUARD_MONOTONIC")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure deployed environments are fully configured."""
        if self.santachat_env in (Environment.STAGING, Environment.PROD):
            missing = []
            if not self.database_url:
                missing.append("DATABASE_URL")
            if not self.auth_jwks_url:
                missing.append("AUTH_JWKS_URL")
            if not self.auth_issuer:
                missing.append("AUTH_ISSUER")
            if not self.auth_audiences:
                missing.append("AUTH_AUDIENCES")
            if missing:
                raise ValueError(
                    f"Missing required settings for SANTACHAT_ENV={self.santachat_env.value}: "
                    f"{', '.join(missing)}"
                )

        if self.message_write_max_attempts < 1:
            raise ValueError("MESSAGE_WRITE_MAX_ATTEMPTS must be at least 1")

        return self

    @property
    def auth_configured(self) -> bool:
        """Whether token verification can be performed."""
        return bool(self.auth_jwks_url and self.auth_issuer and self.auth_audiences)

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.auth_audiences:
            return [a.strip() for a in self.auth_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.auth_issuer:
            return self.auth_issuer.rstrip("/")
        return None

    @property
    def message_write_retry_delay_s(self) -> float:
        return self.message_write_retry_delay_ms / 1000


class ClientSettings(BaseSettings):
    """Configuration for the client-resident delivery and read-state components."""

    api_url: str = "http://localhost:8000"
    outbox_path: str = ".santachat/outbox.json"
    outbox_max_age_days: int = 7

    # Drainer backoff: min(cap, base * 2^(attempt-1) + jitter)
    retry_base_delay_s: float = 2.0
    retry_max_delay_s: float = 300.0
    retry_max_jitter_s: float = 1.0

    drain_interval_s: float = 30.0
    last_read_debounce_s: float = 2.0
    request_timeout_s: float = 10.0

    model_config = SettingsConfigDict(
        env_prefix="SANTACHAT_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


@lru_cache
def get_client_settings() -> ClientSettings:
    """Get cached client settings."""
    return ClientSettings()


def clear_settings_cache() -> None:
    """Clear the settings caches. Useful for testing."""
    get_settings.cache_clear()
    get_client_settings.cache_clear()
