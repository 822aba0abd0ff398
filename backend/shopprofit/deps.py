"""Dependency providers and settings management."""

import re
from functools import lru_cache
from typing import Optional

from fastapi import HTTPException, status
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"

    # Ad platform APIs
    META_GRAPH_API_VERSION: str = "v18.0"
    META_APP_ID: Optional[str] = None
    META_APP_SECRET: Optional[str] = None
    GOOGLE_ADS_API_VERSION: str = "v18"
    GOOGLE_ADS_DEVELOPER_TOKEN: str = ""
    GOOGLE_ADS_CLIENT_ID: Optional[str] = None
    GOOGLE_ADS_CLIENT_SECRET: Optional[str] = None
    GOOGLE_ADS_LOGIN_CUSTOMER_ID: Optional[str] = None
    SHOPIFY_API_VERSION: str = "2024-07"

    # Sync behaviour
    AUTO_SYNC_INTERVAL_MINUTES: int = 60
    AUTO_SYNC_DAYS: int = 3
    INITIAL_BACKFILL_DAYS: int = 90
    SYNC_TIMEOUT_SECONDS: float = 120.0
    MAX_SPEND_PAGES: int = 20

    # Revenue classification
    NEW_CUSTOMER_WINDOW_HOURS: float = 24.0

    SENTRY_DSN: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


_SHOP_DOMAIN = re.compile(r"^[a-z0-9][a-z0-9\-]*\.myshopify\.com$")


def get_shop(shop: str) -> str:
    """Validate the `{shop}` path parameter and return it normalized.

    Every table is scoped by shop domain, so a malformed value is rejected
    before it reaches a query.
    """
    normalized = shop.strip().lower()
    if not _SHOP_DOMAIN.match(normalized):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Shop must be a *.myshopify.com domain",
        )
    return normalized
