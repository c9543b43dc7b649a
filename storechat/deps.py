"""Dependency providers and settings management."""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header
from jose import JWTError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import AuthenticationError
from .security import decode_session_token, shop_from_session_payload
from .services.plan_quota import QuotaWindow
from .telemetry import set_shop_context

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    APP_BASE_URL: str = "http://localhost:8000"
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"

    # Shopify app credentials (session tokens are signed with the secret)
    SHOPIFY_API_KEY: str = ""
    SHOPIFY_API_SECRET: str = ""
    SHOPIFY_API_VERSION: str = "2024-10"

    # Hosts accepted from Referer/Origin and session-token `dest`
    TENANT_DOMAIN_SUFFIX: str = ".myshopify.com"

    # Redis Configuration (arq queue)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Ingestion
    INGEST_PAGE_SIZE: int = 50

    # Storefront widget hash polling
    EMBED_POLL_INTERVAL_MS: int = 5000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def get_quota_window() -> QuotaWindow:
    """Billing window used by the quota gate (overridden with a fixed clock in tests)."""
    return QuotaWindow()


def get_current_shop(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> str:
    """Resolve the authenticated shop from an App Bridge session token.

    The header value is expected to be in the form: "Bearer <jwt>".
    """
    if not authorization:
        raise AuthenticationError("Not authenticated")

    if authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]
    else:
        token = authorization

    try:
        payload = decode_session_token(
            token,
            api_secret=settings.SHOPIFY_API_SECRET,
            api_key=settings.SHOPIFY_API_KEY,
        )
    except JWTError as exc:
        logger.info("[AUTH] Rejected session token: %s", exc)
        raise AuthenticationError("Invalid session token")

    shop = shop_from_session_payload(payload)
    if not shop or not shop.endswith(settings.TENANT_DOMAIN_SUFFIX):
        raise AuthenticationError("Invalid session token payload")

    set_shop_context(shop)
    return shop
