# src/timekeeper/config.py
"""Application configuration using pydantic-settings.

Provides a Settings class for all environment variables. Components receive
a Settings instance at construction; the module-level ``settings`` is only
meant for the process entry point.
"""

from functools import cached_property
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Scheduler settings loaded from environment variables.

    All settings are loaded from .env file and environment variables,
    prefixed with TIMEKEEPER_ (e.g. TIMEKEEPER_SCAN_INTERVAL_SECONDS).
    Environment variables take precedence over .env file values.
    """

    # Persistence
    data_file: str = "data/tasks.json"

    # Scheduling
    scan_interval_seconds: float = Field(1.0, gt=0)
    max_tasks_per_destination: int = Field(25, ge=1)
    timezone: str = "UTC"

    # Delivery
    delivery_timeout_seconds: float = Field(10.0, gt=0)
    max_delivery_failures: int = Field(0, ge=0)  # 0 = retry forever
    webhook_url: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_prefix="TIMEKEEPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unknown env vars
        case_sensitive=False,  # Allow case-insensitive env var names
    )

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @cached_property
    def tzinfo(self) -> ZoneInfo:
        """Timezone used for parsing and template substitution.

        Returns:
            ZoneInfo for the configured timezone name.
        """
        return ZoneInfo(self.timezone)


# Entry-point instance - core components take Settings explicitly
settings = Settings()
