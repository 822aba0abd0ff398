"""Historical spend sync for one (shop, ad platform).

WHAT:
    Drives a SpendAdapter over the last N days and reconciles each day with
    spend into the cost ledger, then stamps `Integration.last_sync`.

WHY:
    - Shared by the manual "Sync" endpoint, the dashboard's background
      auto-sync and the backfill after connecting an account.
    - Never raises: every failure becomes a SyncResult with an error code,
      so a background sync can fail quietly (logged, reported) without
      touching the report that triggered it.

STATE MACHINE:
    1. load integration    -> NotConnectedError when missing/inactive/empty
    2. ensure fresh token  -> CredentialRefreshFailedError, never a stale token
    3. resolve account     -> auto-select first account where supported,
                              else NoAccountSelectedError
    4. fetch range         -> [local today - days, local today], paginated
    5. reconcile           -> upsert_daily_cost per day with amount > 0
    6. finalize            -> last_sync = now, only after every day is written

    A run interrupted between 5 and 6 leaves `last_sync` untouched and the
    written days valid; retrying is safe because upserts overwrite.

REFERENCES:
    - shopprofit/services/spend_adapter.py
    - shopprofit/services/token_service.py
    - shopprofit/services/cost_ledger.py
    - shopprofit/telemetry/sync_telemetry.py
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopprofit.models import AD_PLATFORMS, PlatformEnum, ShopSettings
from shopprofit.schemas import SyncResult
from shopprofit.services.cost_ledger import CostLedger
from shopprofit.services.credentials import Credentials
from shopprofit.services.errors import (
    NoAccountSelectedError,
    NotConnectedError,
    PersistenceError,
    ProfitEngineError,
)
from shopprofit.services.spend_adapter import SpendAdapter, get_adapter
from shopprofit.services.token_service import (
    ensure_fresh_token,
    load_active_integration,
    load_credentials,
    select_account,
)
from shopprofit.telemetry.sentry import capture_exception
from shopprofit.telemetry.sync_telemetry import SyncTelemetry
from shopprofit.utils.periods import local_today

logger = logging.getLogger(__name__)

# Expected outcomes that need the merchant, not an engineer
_UNREPORTED_ERRORS = (NotConnectedError, NoAccountSelectedError)

SPEND_DESCRIPTIONS = {
    PlatformEnum.facebook: "Meta Ads spend",
    PlatformEnum.google: "Google Ads spend",
}


def get_shop_timezone(db: Session, shop: str) -> str:
    settings = db.query(ShopSettings).filter(ShopSettings.shop == shop).first()
    return settings.timezone if settings and settings.timezone else "UTC"


async def _resolve_account(
    db: Session,
    integration,
    credentials: Credentials,
    adapter: SpendAdapter,
    telemetry: SyncTelemetry,
) -> Tuple[str, Credentials]:
    """Return the account to sync, auto-selecting (and persisting) one if allowed."""
    if credentials.selected_account_id:
        return credentials.selected_account_id, credentials

    if not adapter.supports_auto_select:
        raise NoAccountSelectedError(
            f"Select a {integration.platform.value} account before syncing",
            platform=integration.platform.value,
        )

    accounts = await adapter.list_accounts(credentials)
    if not accounts:
        raise NoAccountSelectedError(
            f"No {integration.platform.value} ad accounts available to sync",
            platform=integration.platform.value,
        )

    account_id = accounts[0].id
    credentials = select_account(db, integration, credentials, account_id)
    telemetry.account_selected(account_id, auto=True)
    return account_id, credentials


async def sync_historical(
    db: Session,
    shop: str,
    platform,
    days: int,
    *,
    adapter: Optional[SpendAdapter] = None,
    now: Optional[datetime] = None,
    telemetry: Optional[SyncTelemetry] = None,
) -> SyncResult:
    """Fetch and reconcile the last `days` days of spend.

    Args:
        db: Session used for the integration and the ledger
        shop: Shop domain
        platform: "facebook" or "google"
        days: Range length; the range is [today - days, today] in shop-local days
        adapter: Override the platform adapter (tests)
        now: Current instant (tests)
        telemetry: Collector for state transitions; one is created if omitted

    Returns:
        SyncResult; `success=False` with `error`/`error_code` on any failure.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    platform_name = getattr(platform, "value", platform)
    if platform_name not in {ad_platform.value for ad_platform in AD_PLATFORMS}:
        return SyncResult(success=False, platform=str(platform_name), error=f"Unsupported platform: {platform_name}",
                          error_code="unsupported_platform")
    platform = PlatformEnum(platform_name)

    telemetry = telemetry or SyncTelemetry(shop, platform.value)
    telemetry.started(days)

    total_amount = 0.0
    stored_days = 0
    account_id: Optional[str] = None

    try:
        adapter = adapter or get_adapter(platform)

        # 1. Load integration
        integration = load_active_integration(db, shop, platform)
        credentials = load_credentials(integration)

        # 2. Ensure fresh token
        credentials, refreshed = await ensure_fresh_token(db, integration, credentials, adapter, now=now)
        if refreshed:
            telemetry.token_refreshed()

        # 3. Resolve target account
        account_id, credentials = await _resolve_account(db, integration, credentials, adapter, telemetry)

        # 4. Fetch range
        end_day = local_today(get_shop_timezone(db, shop), now)
        start_day = end_day - timedelta(days=max(days, 0))
        spend = await adapter.fetch_daily_spend(
            credentials, account_id, start_day, end_day, on_page=telemetry.page_fetched,
        )

        # 5. Reconcile
        ledger = CostLedger(db)
        description = SPEND_DESCRIPTIONS.get(platform, f"{platform.value} spend")
        for entry in spend:
            if entry.amount <= 0:
                continue
            ledger.upsert_daily_cost(shop, platform.value, entry.date, entry.amount, description)
            total_amount += entry.amount
            stored_days += 1
            telemetry.day_reconciled(entry.date.isoformat(), entry.amount)

        # 6. Finalize
        integration.last_sync = now.astimezone(timezone.utc).replace(tzinfo=None)
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError("Could not record sync time", platform=platform.value) from exc

    except ProfitEngineError as exc:
        telemetry.failed(exc.code, exc.message)
        if not isinstance(exc, _UNREPORTED_ERRORS):
            capture_exception(exc, extra={"shop": shop, "platform": platform.value, "stored_days": stored_days})
        return SyncResult(
            success=False,
            platform=platform.value,
            account_id=account_id,
            total_amount=round(total_amount, 2),
            stored_days=stored_days,
            error=exc.to_user_message(),
            error_code=exc.code,
        )

    except Exception as exc:
        logger.exception("[HISTORICAL_SYNC] Unexpected failure for %s/%s", shop, platform.value)
        db.rollback()
        telemetry.failed("unexpected_error", str(exc))
        capture_exception(exc, extra={"shop": shop, "platform": platform.value, "stored_days": stored_days})
        return SyncResult(
            success=False,
            platform=platform.value,
            account_id=account_id,
            total_amount=round(total_amount, 2),
            stored_days=stored_days,
            error="Unexpected error during sync",
            error_code="unexpected_error",
        )

    telemetry.completed(total_amount, stored_days)
    return SyncResult(
        success=True,
        platform=platform.value,
        account_id=account_id,
        total_amount=round(total_amount, 2),
        stored_days=stored_days,
    )
