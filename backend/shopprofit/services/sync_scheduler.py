"""Sync triggering: gated manual syncs, background auto-sync and backfill.

WHAT:
    - run_gated_sync: one sync behind the single-flight gate with a deadline
    - schedule_auto_syncs: on dashboard load, refresh the last few days of
      every active ad integration whose last sync is older than the interval
    - schedule_initial_backfill: after credentials are connected

WHY:
    Dashboard requests must not wait on ad platforms. Background runs use
    their own database session because they outlive the request, and their
    failures are logged and reported, never raised into the report.

TIMEOUTS:
    A run exceeding SYNC_TIMEOUT_SECONDS is cancelled at its next await and
    reported as failed. Days already upserted stay; the next run overwrites.

REFERENCES:
    - shopprofit/services/historical_sync_service.py
    - shopprofit/services/sync_gate.py
    - shopprofit/routers/dashboard.py, shopprofit/routers/integrations.py
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, ContextManager, List, Optional, Set

from sqlalchemy.orm import Session

from shopprofit.deps import get_settings
from shopprofit.models import AD_PLATFORMS, Integration, PlatformEnum
from shopprofit.schemas import SyncResult
from shopprofit.services.historical_sync_service import sync_historical
from shopprofit.services.sync_gate import SyncGate, sync_gate
from shopprofit.telemetry import capture_exception

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]

# Strong references so pending background tasks are not garbage collected
_background_tasks: Set[asyncio.Task] = set()


def _default_session_factory() -> ContextManager[Session]:
    from shopprofit.database import get_sync_session
    return get_sync_session()


def should_auto_sync(integration: Integration, now: datetime, interval: timedelta) -> bool:
    """True when never synced or last synced longer than `interval` ago."""
    if integration.last_sync is None:
        return True
    now_naive = now.astimezone(timezone.utc).replace(tzinfo=None) if now.tzinfo else now
    return now_naive - integration.last_sync >= interval


async def run_gated_sync(
    db: Session,
    shop: str,
    platform,
    days: int,
    *,
    timeout: Optional[float] = None,
    gate: SyncGate = sync_gate,
    **sync_kwargs,
) -> SyncResult:
    """Run one sync behind the gate, bounded by `timeout` seconds."""
    platform_value = PlatformEnum(platform).value
    timeout = timeout if timeout is not None else get_settings().SYNC_TIMEOUT_SECONDS

    async def _run() -> SyncResult:
        return await asyncio.wait_for(sync_historical(db, shop, platform_value, days, **sync_kwargs), timeout)

    try:
        return await gate.run(shop, platform_value, _run, days=days)
    except asyncio.TimeoutError:
        logger.warning("[SYNC_SCHEDULER] %s sync for %s timed out after %.0fs", platform_value, shop, timeout)
        return SyncResult(
            success=False,
            platform=platform_value,
            error="Sync timed out",
            error_code="timeout",
        )


async def _background_sync(shop: str, platform: str, days: int, session_factory: SessionFactory) -> Optional[SyncResult]:
    try:
        with session_factory() as db:
            result = await run_gated_sync(db, shop, platform, days)
    except Exception as exc:
        logger.exception("[SYNC_SCHEDULER] Background %s sync crashed for %s", platform, shop)
        capture_exception(exc, extra={"shop": shop, "platform": platform})
        return None

    if result.success:
        logger.info("[SYNC_SCHEDULER] Background %s sync for %s: %s", platform, shop, result.status_message())
    else:
        logger.warning("[SYNC_SCHEDULER] Background %s sync for %s: %s", platform, shop, result.status_message())
    return result


def _spawn(coro) -> asyncio.Task:
    task = asyncio.get_running_loop().create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def schedule_auto_syncs(
    db: Session,
    shop: str,
    *,
    now: Optional[datetime] = None,
    session_factory: SessionFactory = _default_session_factory,
) -> List[str]:
    """Start background syncs for stale active ad integrations.

    Must be called from inside a running event loop.

    Returns:
        Platforms for which a sync was started.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    interval = timedelta(minutes=settings.AUTO_SYNC_INTERVAL_MINUTES)

    integrations = (
        db.query(Integration)
        .filter(
            Integration.shop == shop,
            Integration.is_active.is_(True),
            Integration.platform.in_(AD_PLATFORMS),
        )
        .all()
    )

    started = []
    for integration in integrations:
        platform = integration.platform.value
        if not should_auto_sync(integration, now, interval):
            continue
        if sync_gate.is_running(shop, platform):
            continue
        logger.info("[SYNC_SCHEDULER] Auto-sync %s for %s (last sync %s)", platform, shop, integration.last_sync)
        _spawn(_background_sync(shop, platform, settings.AUTO_SYNC_DAYS, session_factory))
        started.append(platform)
    return started


def schedule_initial_backfill(
    shop: str,
    platform,
    days: Optional[int] = None,
    *,
    session_factory: SessionFactory = _default_session_factory,
) -> asyncio.Task:
    """Backfill history right after an ad account was connected."""
    platform_value = PlatformEnum(platform).value
    days = days or get_settings().INITIAL_BACKFILL_DAYS
    logger.info("[SYNC_SCHEDULER] Initial %d-day %s backfill for %s", days, platform_value, shop)
    return _spawn(_background_sync(shop, platform_value, days, session_factory))
