"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup. If a required setting is missing, the app fails fast with a
clear error message.

Usage:
    from trade_settlement.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Trade Settlement engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://settlement:settlement_dev"
        "@localhost:5432/trade_settlement"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours
    redis_notification_list: str = "settlement:notifications"

    # --- Payment processor ---
    payment_provider: Literal["simulated", "http"] = "simulated"
    payment_api_base_url: str = "http://localhost:9000"
    payment_api_key: str = ""
    payment_timeout_seconds: float = 10.0

    # --- Notifications ---
    notification_backend: Literal["log", "redis"] = "log"

    # --- Settlement timings ---
    release_token_ttl_seconds: int = 300
    pending_release_ttl_hours: int = 72
    auto_release_hours: int = 72  # after hub delivery without buyer confirmation
    session_checkin_window_minutes: int = 60
    session_extension_minutes: int = 60
    dispute_response_hours: int = 48
    dispute_mediation_hours: int = 72
    dispute_window_days: int = 14
    sweep_interval_seconds: int = 0  # 0 disables the in-process sweep loop

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def uses_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
