"""Configuration management for the shortlink service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortlink.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    workers = settings.CLICK_WORKER_COUNT

**Step 3 — Parse API keys**::
    keys = settings.api_keys  # {"key1": "name1", ...}

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Non-positive pipeline or rate limiter values raise ValidationError.
- API_KEYS uses the "key1:name1,key2:name2" format; malformed pairs are skipped.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings", "parse_api_keys"]

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_api_keys(raw: str) -> dict[str, str]:
    keys: dict[str, str] = {}
    if not raw:
        return keys

    for pair in raw.split(","):
        parts = pair.strip().split(":", 1)
        if len(parts) == 2:
            keys[parts[0].strip()] = parts[1].strip()
    return keys


class Settings(BaseSettings):
    APP_NAME: str = "shortlink"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortlink:shortlink@db:5432/shortlink"
    DB_POOL_SIZE: int = Field(5, gt=0)
    DB_MAX_OVERFLOW: int = Field(20, ge=0)
    DB_POOL_RECYCLE_SECONDS: int = Field(3600, gt=0)

    # Redis (link cache)
    REDIS_URL: str = "redis://redis:6379/0"

    # Links
    SHORT_CODE_LENGTH: int = Field(8, gt=0)
    LINK_DEFAULT_TTL_SECONDS: int = Field(24 * 60 * 60, gt=0)
    LINK_MAX_TTL_SECONDS: int = Field(30 * 24 * 60 * 60, gt=0)
    BLACKLISTED_DOMAINS: list[str] = ["malware.com", "phishing.com", "spam.com"]

    # API key auth, "key1:name1,key2:name2"; empty disables auth
    API_KEYS: str = ""

    # Click ingestion pipeline
    CLICK_WORKER_COUNT: int = Field(3, gt=0)
    CLICK_QUEUE_CAPACITY: int = Field(1000, gt=0)
    CLICK_MAX_RETRIES: int = Field(3, gt=0)
    CLICK_RETRY_BACKOFF_SECONDS: float = Field(0.1, gt=0)

    # Token bucket rate limiter
    RATE_LIMIT_RPS: float = Field(10.0, gt=0)
    RATE_LIMIT_BURST: int = Field(20, gt=0)
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: float = Field(60.0, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @property
    def api_keys(self) -> dict[str, str]:
        return parse_api_keys(self.API_KEYS)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
