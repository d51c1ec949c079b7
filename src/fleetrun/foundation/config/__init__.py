"""Configuration: pydantic-settings models loaded from FLEETRUN_* environment variables."""

from .settings import (
    DEFAULT_API_URL,
    BatchSettings,
    BreakerSettings,
    FleetrunSettings,
    HttpSettings,
    LoggingSettings,
    PollingSettings,
    RetrySettings,
    UrlSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "DEFAULT_API_URL",
    "FleetrunSettings",
    "RetrySettings",
    "BreakerSettings",
    "HttpSettings",
    "PollingSettings",
    "BatchSettings",
    "LoggingSettings",
    "UrlSettings",
    "get_settings",
    "clear_settings_cache",
]
