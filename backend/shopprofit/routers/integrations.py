"""Integration endpoints: credential hand-off, account selection, manual sync.

WHAT:
    - PUT    /shops/{shop}/integrations/{platform}            store OAuth credentials
    - DELETE /shops/{shop}/integrations/{platform}            disconnect
    - GET    /shops/{shop}/integrations                       connection status
    - GET    /shops/{shop}/integrations/{platform}/accounts   list ad accounts
    - PUT    /shops/{shop}/integrations/{platform}/account    select ad account
    - POST   /shops/{shop}/integrations/{platform}/sync       run a historical sync

WHY:
    The OAuth handshake happens in the embedded app; this backend only
    receives the resulting tokens, encrypts them and keeps spend in sync.

    A manual sync answers 200 with a SyncResponse even when it fails, so the
    UI can show a non-blocking status line.

REFERENCES:
    - shopprofit/services/token_service.py
    - shopprofit/services/sync_scheduler.py
    - shopprofit/services/historical_sync_service.py
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from shopprofit import schemas
from shopprofit.database import get_db
from shopprofit.deps import get_shop
from shopprofit.models import AD_PLATFORMS, PlatformEnum
from shopprofit.services.credentials import parse_credentials
from shopprofit.services.errors import (
    CredentialRefreshFailedError,
    NoAccountSelectedError,
    NotConnectedError,
    ParseError,
    ProfitEngineError,
    ProviderError,
)
from shopprofit.services.report_service import integration_statuses, revenue_source_for_shop
from shopprofit.services.settings_service import set_shop_timezone
from shopprofit.services.spend_adapter import get_adapter
from shopprofit.services.sync_scheduler import run_gated_sync, schedule_initial_backfill
from shopprofit.services.token_service import (
    deactivate_integration,
    ensure_fresh_token,
    load_active_integration,
    load_credentials,
    select_account,
    store_credentials,
)
from shopprofit.telemetry.sentry import capture_exception

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/shops",
    tags=["Integrations"],
)

_ERROR_STATUS = {
    NotConnectedError: status.HTTP_404_NOT_FOUND,
    NoAccountSelectedError: status.HTTP_409_CONFLICT,
    CredentialRefreshFailedError: status.HTTP_401_UNAUTHORIZED,
    ParseError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ProviderError: status.HTTP_502_BAD_GATEWAY,
}


def _http_error(exc: ProfitEngineError) -> HTTPException:
    code = next(
        (status_code for error_type, status_code in _ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return HTTPException(status_code=code, detail={"error": exc.to_user_message(), "code": exc.code})


def _platform(platform: str, *, ad_only: bool = False) -> PlatformEnum:
    try:
        value = PlatformEnum(platform)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown platform: {platform}")
    if value == PlatformEnum.manual or (ad_only and value not in AD_PLATFORMS):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{platform} has no integration for this action")
    return value


def _integration_out(integration, credentials, sync_started: bool = False) -> schemas.IntegrationOut:
    return schemas.IntegrationOut(
        platform=integration.platform.value,
        is_active=integration.is_active,
        last_sync=integration.last_sync,
        selected_account_id=credentials.selected_account_id,
        sync_started=sync_started,
    )


def _start_backfill(shop: str, platform: PlatformEnum, credentials) -> bool:
    """Backfill when the sync can resolve an account on its own."""
    if platform not in AD_PLATFORMS:
        return False
    if not credentials.selected_account_id and not get_adapter(platform).supports_auto_select:
        return False
    schedule_initial_backfill(shop, platform)
    return True


async def _sync_shop_timezone(db: Session, shop: str) -> None:
    """Copy the Shopify shop timezone into settings; keep the current one on failure."""
    source = revenue_source_for_shop(db, shop)
    if source is None:
        return
    try:
        timezone_name = await source.fetch_timezone()
    except Exception as exc:
        logger.warning("[INTEGRATIONS] Could not read Shopify timezone for %s: %s", shop, exc)
        capture_exception(exc, extra={"shop": shop, "platform": PlatformEnum.shopify.value})
        return
    set_shop_timezone(db, shop, timezone_name)


@router.get("/{shop}/integrations", response_model=List[schemas.IntegrationStatus])
def list_integrations(shop: str = Depends(get_shop), db: Session = Depends(get_db)):
    return integration_statuses(db, shop)


@router.put(
    "/{shop}/integrations/{platform}",
    response_model=schemas.IntegrationOut,
    summary="Store credentials from the OAuth flow",
)
async def connect_integration(
    platform: str,
    payload: schemas.CredentialsIn,
    shop: str = Depends(get_shop),
    db: Session = Depends(get_db),
):
    """Encrypt and store credentials, then start the initial backfill.

    For Shopify the shop timezone is read once so reports use local days.
    """
    platform_value = _platform(platform)

    data = payload.model_dump(exclude_none=True, exclude={"expires_in"})
    if payload.expires_at is None and payload.expires_in:
        data["expires_at"] = datetime.now(timezone.utc) + timedelta(seconds=payload.expires_in)

    try:
        credentials = parse_credentials(platform_value.value, data)
        integration = store_credentials(db, shop, platform_value, credentials)
    except ProfitEngineError as exc:
        raise _http_error(exc)

    if platform_value == PlatformEnum.shopify:
        await _sync_shop_timezone(db, shop)

    sync_started = _start_backfill(shop, platform_value, credentials)
    return _integration_out(integration, credentials, sync_started)


@router.delete(
    "/{shop}/integrations/{platform}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Disconnect a platform",
)
def disconnect_integration(platform: str, shop: str = Depends(get_shop), db: Session = Depends(get_db)):
    if not deactivate_integration(db, shop, _platform(platform)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Integration not found")
    return None


@router.get(
    "/{shop}/integrations/{platform}/accounts",
    response_model=List[schemas.AdAccountOut],
    summary="List ad accounts reachable with the stored token",
)
async def list_ad_accounts(platform: str, shop: str = Depends(get_shop), db: Session = Depends(get_db)):
    platform_value = _platform(platform, ad_only=True)
    adapter = get_adapter(platform_value)
    try:
        integration = load_active_integration(db, shop, platform_value)
        credentials, _ = await ensure_fresh_token(db, integration, load_credentials(integration), adapter)
    except ProfitEngineError as exc:
        raise _http_error(exc)

    accounts = await adapter.list_accounts(credentials)
    return [schemas.AdAccountOut(id=account.id, name=account.name) for account in accounts]


@router.put(
    "/{shop}/integrations/{platform}/account",
    response_model=schemas.IntegrationOut,
    summary="Select the ad account to track",
)
def choose_ad_account(
    platform: str,
    payload: schemas.AccountSelectRequest,
    shop: str = Depends(get_shop),
    db: Session = Depends(get_db),
):
    platform_value = _platform(platform, ad_only=True)
    try:
        integration = load_active_integration(db, shop, platform_value)
        credentials = select_account(db, integration, load_credentials(integration), payload.account_id)
    except ProfitEngineError as exc:
        raise _http_error(exc)

    sync_started = _start_backfill(shop, platform_value, credentials)
    return _integration_out(integration, credentials, sync_started)


@router.post(
    "/{shop}/integrations/{platform}/sync",
    response_model=schemas.SyncResponse,
    summary="Sync historical ad spend",
)
async def sync_integration(
    platform: str,
    days: int = Query(30, ge=1, le=365, description="Days back from today to reconcile"),
    shop: str = Depends(get_shop),
    db: Session = Depends(get_db),
):
    platform_value = _platform(platform, ad_only=True)
    result = await run_gated_sync(db, shop, platform_value, days)
    logger.info("[INTEGRATIONS] Manual %s sync for %s: %s", platform_value.value, shop, result.status_message())
    return schemas.SyncResponse(**result.model_dump(), message=result.status_message())
