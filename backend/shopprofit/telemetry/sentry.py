"""
Sentry Error Tracking
=====================

Centralized error tracking for the API and for background syncs.

Related files:
- shopprofit/main.py: Initializes Sentry on app startup
- shopprofit/services/historical_sync_service.py: reports handled sync failures
- shopprofit/services/report_service.py: reports revenue-source failures

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays disabled when unset)
- ENVIRONMENT: Environment name (production, staging, development)
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = logging.getLogger(__name__)


def get_sentry_dsn() -> Optional[str]:
    return os.environ.get("SENTRY_DSN")


def init_sentry() -> bool:
    """
    Initialize the Sentry SDK once during application startup.

    Returns:
        True if Sentry was initialized, False when no DSN is configured or
        initialization failed.
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
                LoggingIntegration(
                    level=logging.INFO,        # INFO+ as breadcrumbs
                    event_level=logging.ERROR,  # ERROR+ as events
                ),
            ],
            traces_sample_rate=0.1,
            send_default_pii=False,
            release=os.environ.get("RELEASE_VERSION"),
        )
        logger.debug("[SENTRY] Initialized for %s environment", environment)
        return True

    except Exception as e:
        logger.error("[SENTRY] Failed to initialize: %s", e)
        return False


def set_shop_context(shop: str) -> None:
    """Tag subsequent events in this scope with the shop domain."""
    try:
        sentry_sdk.set_tag("shop", shop)
    except Exception as e:
        logger.debug("[SENTRY] Failed to set shop context: %s", e)


def capture_exception(exception: Exception, extra: Optional[dict] = None) -> None:
    """
    Capture an exception that was caught and converted into a result.

    Example:
        except ProviderError as exc:
            capture_exception(exc, extra={"shop": shop, "platform": "google"})
            return SyncResult(success=False, error=exc.message)
    """
    if not get_sentry_dsn():
        logger.debug("[SENTRY] Disabled, not capturing %s", type(exception).__name__)
        return

    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in (extra or {}).items():
                scope.set_extra(key, value)
            sentry_sdk.capture_exception(exception)
    except Exception as e:
        logger.error("[SENTRY] Failed to capture exception: %s", e)


def capture_message(message: str, level: str = "info", extra: Optional[dict] = None) -> None:
    """Capture a notable non-exception event (e.g. a sync hitting the page cap)."""
    if not get_sentry_dsn():
        logger.log(logging.getLevelName(level.upper()), "Message (Sentry disabled): %s", message)
        return

    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in (extra or {}).items():
                scope.set_extra(key, value)
            sentry_sdk.capture_message(message, level=level)
    except Exception as e:
        logger.error("[SENTRY] Failed to capture message: %s", e)
