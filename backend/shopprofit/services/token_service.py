"""Integration credential storage and refresh.

WHAT:
    The single writer of `Integration.credentials`: stores credentials handed
    over by the OAuth flow, loads and decodes them for a sync, refreshes an
    expired access token through the platform adapter and remembers the
    selected ad account.

WHY:
    A refreshed token must be persisted before it is used, so any later call
    in the same sync (or a concurrent request) reuses it. A sync must never
    fall back to a stale token; a failed refresh ends the sync.

REFERENCES:
    - shopprofit/services/credentials.py (typed blobs)
    - shopprofit/services/historical_sync_service.py (consumer)
    - shopprofit/routers/integrations.py (credential hand-off endpoint)
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopprofit.models import Integration, PlatformEnum
from shopprofit.services.credentials import Credentials, decode_credentials, encode_credentials
from shopprofit.services.errors import (
    CredentialRefreshFailedError,
    NotConnectedError,
    PersistenceError,
    ProfitEngineError,
)

logger = logging.getLogger(__name__)


def get_integration(db: Session, shop: str, platform) -> Optional[Integration]:
    platform = PlatformEnum(platform)
    return (
        db.query(Integration)
        .filter(Integration.shop == shop, Integration.platform == platform)
        .first()
    )


def load_active_integration(db: Session, shop: str, platform) -> Integration:
    """Return the active integration or raise NotConnectedError."""
    integration = get_integration(db, shop, platform)
    if not integration or not integration.is_active or not integration.credentials:
        raise NotConnectedError(
            f"No active {PlatformEnum(platform).value} integration for {shop}",
            platform=PlatformEnum(platform).value,
        )
    return integration


def load_credentials(integration: Integration) -> Credentials:
    return decode_credentials(integration.platform.value, integration.credentials)


def save_credentials(db: Session, integration: Integration, credentials: Credentials) -> None:
    """Encrypt and commit credentials on an existing integration."""
    integration.credentials = encode_credentials(credentials)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(
            f"Could not save {integration.platform.value} credentials", platform=integration.platform.value,
        ) from exc


def store_credentials(db: Session, shop: str, platform, credentials: Credentials) -> Integration:
    """Create or update the integration after a successful OAuth handshake.

    Reconnecting reactivates the integration and clears `last_sync` so the
    next dashboard visit triggers a fresh sync.
    """
    platform = PlatformEnum(platform)
    integration = get_integration(db, shop, platform)
    if integration is None:
        integration = Integration(shop=shop, platform=platform)
        db.add(integration)

    integration.is_active = True
    integration.last_sync = None
    save_credentials(db, integration, credentials)
    db.refresh(integration)

    logger.info("[TOKEN_SERVICE] Stored %s credentials for %s", platform.value, shop)
    return integration


def deactivate_integration(db: Session, shop: str, platform) -> bool:
    """Mark the integration inactive. Returns False when there was none."""
    integration = get_integration(db, shop, platform)
    if integration is None:
        return False
    integration.is_active = False
    db.commit()
    logger.info("[TOKEN_SERVICE] Deactivated %s integration for %s", integration.platform.value, shop)
    return True


def select_account(db: Session, integration: Integration, credentials: Credentials, account_id: str) -> Credentials:
    """Persist the external account the merchant tracks."""
    updated = credentials.with_account(account_id)
    save_credentials(db, integration, updated)
    logger.info(
        "[TOKEN_SERVICE] %s account %s selected for %s",
        integration.platform.value, account_id, integration.shop,
    )
    return updated


async def ensure_fresh_token(
    db: Session,
    integration: Integration,
    credentials: Credentials,
    adapter,
    now: Optional[datetime] = None,
) -> Tuple[Credentials, bool]:
    """Refresh the access token if it has expired.

    Returns:
        (credentials to use, whether a refresh happened)

    Raises:
        CredentialRefreshFailedError: Expired with no refresh token, the
            platform rejected the refresh, or the new token could not be saved.
    """
    now = now or datetime.now(timezone.utc)
    if not credentials.is_expired(now):
        return credentials, False

    platform = integration.platform.value
    if not credentials.refresh_token:
        raise CredentialRefreshFailedError(
            f"{platform} access token expired and no refresh token is stored", platform=platform,
        )

    logger.info("[TOKEN_SERVICE] %s token for %s expired at %s, refreshing", platform, integration.shop, credentials.expires_at)
    try:
        grant = await adapter.refresh_access_token(credentials.refresh_token)
        refreshed = credentials.with_token(grant.access_token, grant.expires_in, grant.refresh_token, now=now)
        save_credentials(db, integration, refreshed)
    except CredentialRefreshFailedError:
        raise
    except (ProfitEngineError, httpx.HTTPError) as exc:
        logger.warning("[TOKEN_SERVICE] %s token refresh failed for %s: %s", platform, integration.shop, exc)
        raise CredentialRefreshFailedError(
            f"Could not refresh {platform} access token: {exc}", platform=platform,
        ) from exc

    return refreshed, True
