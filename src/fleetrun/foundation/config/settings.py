"""Settings for fleetrun, read from FLEETRUN_* environment variables (and .env).

Each concern has its own section with its own prefix; the defaults are the
service's documented client defaults.

Example:
    >>> from fleetrun.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.retry.max_attempts
    3
    >>> settings.polling.interval
    2.0

    # Overridden from the environment:
    # FLEETRUN_API_KEY=sk-...
    # FLEETRUN_RETRY_MAX_ATTEMPTS=5
    # FLEETRUN_POLLING_INTERVAL=10
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import (
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    computed_field,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from fleetrun.runtime.retry import RetryPolicy

DEFAULT_API_URL = "https://api.fleetrun.dev"


class RetrySettings(BaseSettings):
    """Default retry policy for remote calls."""

    model_config = SettingsConfigDict(env_prefix="FLEETRUN_RETRY_", extra="ignore")

    max_attempts: Annotated[int, Field(ge=1, le=20)] = 3
    initial_delay: PositiveFloat = Field(default=1.0, description="First backoff delay in seconds")
    max_delay: PositiveFloat = Field(default=30.0, description="Backoff ceiling in seconds")
    multiplier: Annotated[float, Field(ge=1.0)] = 2.0
    jitter: Annotated[float, Field(ge=0.0, lt=1.0)] = 0.2

    def to_policy(self) -> RetryPolicy:
        """Build the runtime policy from these settings."""
        from fleetrun.runtime.retry import RetryPolicy
        return RetryPolicy(
            max_attempts=self.max_attempts, initial_delay=self.initial_delay, max_delay=self.max_delay,
            multiplier=self.multiplier, jitter=self.jitter,
        )


class BreakerSettings(BaseSettings):
    """Circuit breaker thresholds."""

    model_config = SettingsConfigDict(env_prefix="FLEETRUN_BREAKER_", extra="ignore")

    failure_threshold: PositiveInt = 5
    reset_timeout: PositiveFloat = Field(default=30.0, description="Seconds open before a half-open trial call")
    half_open_successes: PositiveInt = Field(default=3, description="Trial successes needed to close")


class HttpSettings(BaseSettings):
    """HTTP transport configuration."""

    model_config = SettingsConfigDict(env_prefix="FLEETRUN_HTTP_", extra="ignore")

    timeout: PositiveFloat = Field(default=45 * 60.0, description="Per-request timeout in seconds")
    connect_timeout: PositiveFloat = 10.0
    bulk_submit_deadline: PositiveFloat = Field(default=10 * 60.0, description="Ceiling for one batch submission")
    verify_ssl: bool = True
    user_agent: str | None = None


class PollingSettings(BaseSettings):
    """Batch status polling defaults."""

    model_config = SettingsConfigDict(env_prefix="FLEETRUN_POLLING_", extra="ignore")

    interval: PositiveFloat = Field(default=2.0, description="Seconds between status fetches")
    max_wait: PositiveFloat = Field(default=90 * 60.0, description="Give up following after this many seconds")
    queue_size: PositiveInt = 1


class BatchSettings(BaseSettings):
    """Batch submission limits."""

    model_config = SettingsConfigDict(env_prefix="FLEETRUN_BATCH_", extra="ignore")

    max_size: Annotated[int, Field(ge=1, le=40)] = 40


class LoggingSettings(BaseSettings):
    """Log renderer and minimum level."""

    model_config = SettingsConfigDict(env_prefix="FLEETRUN_LOG_", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "none"] = "console"

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


class UrlSettings(BaseSettings):
    """Dashboard links used in remediation hints."""

    model_config = SettingsConfigDict(env_prefix="FLEETRUN_URL_", extra="ignore")

    pricing_url: str = "https://fleetrun.dev/pricing"
    repos_url: str = "https://fleetrun.dev/repos"
    settings_url: str = "https://fleetrun.dev/dashboard/user-profile/api-keys"


class FleetrunSettings(BaseSettings):
    """Root settings.

    Sections can also be set as one JSON value or with ``__`` nesting
    (``FLEETRUN_RETRY__MAX_ATTEMPTS``). For example:

        FLEETRUN_API_URL=https://staging.fleetrun.dev
        FLEETRUN_API_KEY=sk-...
        FLEETRUN_BREAKER_FAILURE_THRESHOLD=3
        FLEETRUN_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEETRUN_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    api_url: str = DEFAULT_API_URL
    api_key: SecretStr | None = None
    debug: bool = False

    retry: RetrySettings = Field(default_factory=RetrySettings)
    breaker: BreakerSettings = Field(default_factory=BreakerSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    urls: UrlSettings = Field(default_factory=UrlSettings)

    @field_validator("api_url", mode="before")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/") if isinstance(v, str) else v

    @computed_field
    @property
    def has_api_key(self) -> bool:
        return self.api_key is not None and bool(self.api_key.get_secret_value())


@lru_cache(maxsize=1)
def get_settings() -> FleetrunSettings:
    """Get the global settings instance (cached)."""
    return FleetrunSettings()


def clear_settings_cache() -> None:
    """Forget the cached settings; the next get_settings() re-reads the environment."""
    get_settings.cache_clear()
