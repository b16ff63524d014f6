"""Configuration settings for the billing core."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )

    # Billing windows
    upcoming_window_days: int = Field(
        default=30, ge=0, validation_alias="UPCOMING_WINDOW_DAYS"
    )
    default_currency: str = Field(default="USD", validation_alias="DEFAULT_CURRENCY")

    # Offer letters
    offer_letter_validity_months: int = Field(
        default=6, ge=1, validation_alias="OFFER_LETTER_VALIDITY_MONTHS"
    )

    # Hosting service
    transition_max_retries: int = Field(
        default=3, ge=0, validation_alias="TRANSITION_MAX_RETRIES"
    )
    schedule_templates_path: Path | None = Field(
        default=None, validation_alias="SCHEDULE_TEMPLATES_PATH"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
