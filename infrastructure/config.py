"""Application configuration loaded from the environment.

Business rules (quotas, opening hours, lead time) live in the settings
store and are read through ``SettingsProvider``; this module only holds
process-level knobs.
"""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    # ---- App ----
    app_name: str = "Coworking Reservation API"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    # ---- Booking ----
    # Reservation dates and HH:MM times are interpreted in this zone
    booking_timezone: str = "Europe/Madrid"
    currency: str = "EUR"

    # ---- Settings cache ----
    settings_cache_ttl_seconds: float = Field(default=60.0, ge=0)

    # ---- Completion sweep ----
    auto_complete_enabled: bool = True
    auto_complete_retry_seconds: float = Field(default=3600.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="COWORK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> AppSettings:
    return AppSettings()
