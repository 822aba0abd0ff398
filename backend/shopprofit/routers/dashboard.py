"""
Dashboard Router
================

Purpose:
- Profit dashboard for a named period (today, yesterday, thisMonth,
  lastMonth, lastNdays)
- Starts background ad spend syncs for stale integrations on every visit

Design Principles:
- The response never waits on ad platforms; it reads the cost ledger
- Shopify failures degrade to a cost-only report with `error` set

References:
- shopprofit/services/report_service.py: report assembly
- shopprofit/services/sync_scheduler.py: auto-sync
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from shopprofit import schemas
from shopprofit.database import get_db
from shopprofit.deps import get_shop
from shopprofit.services.report_service import build_dashboard_report, revenue_source_for_shop
from shopprofit.services.sync_scheduler import schedule_auto_syncs
from shopprofit.telemetry import set_shop_context

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/shops",
    tags=["Dashboard"],
)


@router.get(
    "/{shop}/dashboard",
    response_model=schemas.DashboardResponse,
    summary="Profit dashboard for a period",
)
async def get_dashboard(
    period: str = Query("last30days", description="today | yesterday | thisMonth | lastMonth | last<N>days"),
    shop: str = Depends(get_shop),
    db: Session = Depends(get_db),
):
    set_shop_context(shop)

    auto_sync_started = schedule_auto_syncs(db, shop)
    if auto_sync_started:
        logger.info("[DASHBOARD] Auto-sync started for %s: %s", shop, ", ".join(auto_sync_started))

    report = await build_dashboard_report(db, shop, period, revenue_source_for_shop(db, shop))
    report.auto_sync_started = auto_sync_started
    return report
