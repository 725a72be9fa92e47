"""
Configuration settings for expensesync.

Uses Pydantic Settings to load environment variables for the remote API,
the local database, logging, and sync policy.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DB_PATH = str(Path.home() / ".expensesync" / "expensesync.db")


class Settings(BaseSettings):
    # Remote authority
    api_base_url: str = Field("http://localhost:7071/api", alias="EXPENSESYNC_API_BASE_URL")
    api_token: Optional[str] = Field(None, alias="EXPENSESYNC_API_TOKEN")
    request_timeout_seconds: float = Field(30.0, alias="REQUEST_TIMEOUT_SECONDS")
    probe_timeout_seconds: float = Field(5.0, alias="PROBE_TIMEOUT_SECONDS")
    gateway_retry_attempts: int = Field(3, alias="GATEWAY_RETRY_ATTEMPTS")

    # Local storage
    db_path: str = Field(DEFAULT_DB_PATH, alias="EXPENSESYNC_DB_PATH")
    owner_id: Optional[str] = Field(None, alias="EXPENSESYNC_OWNER_ID")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Sync policy
    sync_interval_seconds: float = Field(30.0, alias="SYNC_INTERVAL_SECONDS")
    max_sync_attempts: int = Field(0, alias="MAX_SYNC_ATTEMPTS")
    local_id_prefix: str = Field("local-", alias="LOCAL_ID_PREFIX")
    default_currency: str = Field("USD", alias="DEFAULT_CURRENCY")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings", "DEFAULT_DB_PATH"]
