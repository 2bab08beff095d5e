from __future__ import annotations

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    SHOPIFY_INTERNAL_API_TOKEN: str
    SHOPIFY_APP_DB_URL: str = "sqlite:///./shopify_inventory_app.db"
    SHOPIFY_ADMIN_API_VERSION: str = "2026-01"
    SHOPIFY_REQUEST_TIMEOUT_SECONDS: float = 20.0

    INVENTORY_RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    INVENTORY_RETRY_BASE_DELAY_SECONDS: float = Field(default=0.5, ge=0)
    INVENTORY_ADJUSTMENT_REASON: str = "correction"
    INVENTORY_RECENT_LEVELS_WINDOW_SECONDS: int = Field(default=1, ge=1)

    LOG_LEVEL: str = "INFO"

    @field_validator("INVENTORY_ADJUSTMENT_REASON")
    @classmethod
    def validate_adjustment_reason(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if not cleaned:
            raise ValueError("INVENTORY_ADJUSTMENT_REASON must not be empty")
        return cleaned

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"LOG_LEVEL is not a known logging level: {value!r}")
        return level

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
