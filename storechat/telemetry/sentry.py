"""
Sentry Error Tracking
=====================

Centralized error tracking using Sentry.

Related files:
- storechat/main.py: Initializes Sentry in create_app()
- storechat/workers/arq_worker.py: Initializes Sentry on worker startup
- storechat/services/*.py: Handled errors reported via capture_exception

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays disabled without it)
- ENVIRONMENT: Environment name (production, staging, development)
"""

from __future__ import annotations

import os
import logging
from typing import Optional
from functools import lru_cache

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)


@lru_cache()
def get_sentry_dsn() -> Optional[str]:
    """Get Sentry DSN from environment variable."""
    return os.environ.get("SENTRY_DSN")


def is_enabled() -> bool:
    return sentry_sdk.is_initialized()


def init_sentry() -> bool:
    """
    Initialize Sentry SDK.

    Should be called once during application or worker startup.

    Returns:
        True if Sentry was initialized, False when no DSN is configured
        or initialization failed.
    """
    dsn = get_sentry_dsn()
    if not dsn:
        return False

    environment = os.environ.get("ENVIRONMENT", "development")

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                RedisIntegration(),
                LoggingIntegration(
                    level=logging.INFO,        # Capture INFO+ as breadcrumbs
                    event_level=logging.ERROR,  # Send ERROR+ as events
                ),
            ],
            traces_sample_rate=0.1,
            # Storefront visitors are anonymous; never attach request PII
            send_default_pii=False,
            release=os.environ.get("RELEASE_VERSION"),
        )

        logger.debug("[SENTRY] Initialized for %s environment", environment)
        return True

    except Exception as e:
        logger.error("[SENTRY] Failed to initialize: %s", e)
        return False


def set_shop_context(shop: str) -> None:
    """Tag subsequent events in this scope with the tenant."""
    if not is_enabled():
        return
    sentry_sdk.set_tag("shop", shop)


def capture_exception(exception: Exception, extra: Optional[dict] = None) -> None:
    """
    Manually capture an exception to Sentry.

    Use this for exceptions that are caught and handled (fail-open quota
    checks, failed ingestion kinds) but should still be tracked.

    Example:
        try:
            gate.can_create_conversation(shop)
        except SQLAlchemyError as e:
            capture_exception(e, extra={"shop": shop})
    """
    if not is_enabled():
        logger.debug("[SENTRY] Disabled, not capturing: %s", exception)
        return

    try:
        with sentry_sdk.new_scope() as scope:
            if extra:
                for key, value in extra.items():
                    scope.set_extra(key, value)
            sentry_sdk.capture_exception(exception)
    except Exception as e:
        logger.error("[SENTRY] Failed to capture exception: %s", e)
