# app/core/config.py - Consolidated

import os
from functools import lru_cache
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file).
    Per-tenant store credentials live in the sync_settings table, not here.
    """
    # Database settings
    DATABASE_URL: str = ""

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Basic Auth for the control API
    BASIC_AUTH_USERNAME: str = "admin"
    BASIC_AUTH_PASSWORD: Optional[str] = None

    # Polling scheduler
    SYNC_SCHEDULER_ENABLED: bool = True
    SYNC_TICK_MINUTES: int = 5
    DEFAULT_SYNC_INTERVAL_MINUTES: int = 15
    POLL_PAGE_SIZE: int = 100
    POLL_MAX_PAGES: int = 50
    POLL_INITIAL_LOOKBACK_HOURS: int = 24

    # Remote store API
    REMOTE_TIMEOUT_SECONDS: float = 30.0
    REMOTE_MAX_RETRIES: int = 3
    REMOTE_RETRY_BASE_DELAY: float = 1.0

    # Batch import jobs
    IMPORT_BATCH_SIZE: int = 50
    IMPORT_PAGE_DELAY_SECONDS: float = 1.0

    # Order mapping
    ECHO_SUPPRESSION_SECONDS: int = 300
    ORDER_NUMBER_PREFIX: str = "EXT"
    DEFAULT_CURRENCY: str = "EGP"
    DEFAULT_COUNTRY_CODE: str = "EG"

    # Used when registering webhooks on the remote store
    PUBLIC_BASE_URL: str = ""

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()


def get_settings_no_cache():
    """Get settings without caching - useful for testing different environments"""
    return Settings()


def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()
