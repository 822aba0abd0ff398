"""Dashboard profit report.

WHAT:
    Builds the dashboard payload for a named period: revenue and product
    costs from the revenue source, marketing / fixed / manual costs from the
    ledger, profit metrics, margins, distributions, trends against the
    previous period of equal length, and target statuses.

WHY:
    A report must still render when Shopify is unreachable. In that case it
    falls back to cost-only metrics (zero revenue) and carries an `error`
    explaining why, instead of failing the whole request.

PROCESS:
    1. Resolve current and previous period in the shop timezone
    2. Ledger costs for both periods
    3. Sales and product costs for both periods (fallback on failure)
    4. Shipping = Shopify shipping + manual shipping; COGS likewise
    5. compute_profit for both, trends, margins, distributions
    6. Targets and their statuses for the current period

REFERENCES:
    - shopprofit/services/profit_calculator.py
    - shopprofit/services/cost_ledger.py
    - shopprofit/services/revenue_service.py
    - shopprofit/routers/dashboard.py
"""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from shopprofit import schemas
from shopprofit.deps import get_settings
from shopprofit.models import Integration, PlatformEnum
from shopprofit.services.cost_ledger import CostLedger, LedgerCosts
from shopprofit.services.credentials import decode_credentials
from shopprofit.services.errors import ProfitEngineError
from shopprofit.services.profit_calculator import (
    TRENDED_METRICS,
    CostsData,
    SalesData,
    compute_distributions,
    compute_margins,
    compute_profit,
    compute_target_statuses,
    compute_trends,
)
from shopprofit.services.revenue_service import NewCustomerPolicy, ProductCosts, ShopifyRevenueSource
from shopprofit.services.settings_service import get_metric_targets, get_shop_settings
from shopprofit.services.shopify_client import ShopifyClient
from shopprofit.telemetry.sentry import capture_exception
from shopprofit.utils.periods import PeriodRange, resolve_period

logger = logging.getLogger(__name__)

REPORTED_PLATFORMS = (PlatformEnum.shopify, PlatformEnum.facebook, PlatformEnum.google)


def revenue_source_for_shop(db: Session, shop: str) -> Optional[ShopifyRevenueSource]:
    """Revenue source from the shop's Shopify integration, None if unavailable."""
    integration = (
        db.query(Integration)
        .filter(
            Integration.shop == shop,
            Integration.platform == PlatformEnum.shopify,
            Integration.is_active.is_(True),
        )
        .first()
    )
    if integration is None or not integration.credentials:
        return None

    try:
        credentials = decode_credentials(PlatformEnum.shopify.value, integration.credentials)
    except ProfitEngineError as exc:
        logger.warning("[REPORT] Shopify credentials unusable for %s: %s", shop, exc)
        return None

    settings = get_settings()
    client = ShopifyClient(shop, credentials.access_token, api_version=settings.SHOPIFY_API_VERSION)
    return ShopifyRevenueSource(client, NewCustomerPolicy(window_hours=settings.NEW_CUSTOMER_WINDOW_HOURS))


def _costs_data(ledger_costs: LedgerCosts, products: ProductCosts) -> CostsData:
    return CostsData(
        shipping_costs=products.shipping + ledger_costs.manual.shipping,
        cogs=products.cogs + ledger_costs.manual.cogs,
        marketing_costs=ledger_costs.marketing,
        fixed_costs=ledger_costs.fixed,
        other_costs=ledger_costs.manual.other,
    )


def _period_out(period: PeriodRange) -> schemas.PeriodOut:
    return schemas.PeriodOut(
        key=period.key, start_date=period.start_date, end_date=period.end_date, days=period.days,
    )


def integration_statuses(db: Session, shop: str) -> list:
    rows = {row.platform: row for row in db.query(Integration).filter(Integration.shop == shop).all()}
    statuses = []
    for platform in REPORTED_PLATFORMS:
        row = rows.get(platform)
        statuses.append(schemas.IntegrationStatus(
            platform=platform.value,
            connected=bool(row and row.is_active and row.credentials),
            last_sync=row.last_sync if row else None,
        ))
    return statuses


async def build_dashboard_report(
    db: Session,
    shop: str,
    period_key: Optional[str],
    revenue_source=None,
    *,
    now: Optional[datetime] = None,
) -> schemas.DashboardResponse:
    """Assemble the dashboard for `period_key` (see utils/periods.py)."""
    shop_settings = get_shop_settings(db, shop)
    tz_name = shop_settings.timezone
    fee_percent = float(shop_settings.transaction_fee_percent)

    period = resolve_period(period_key, tz_name, now)
    previous = period.previous()

    ledger = CostLedger(db)
    current_ledger = ledger.get_costs(shop, period.start, period.end)
    previous_ledger = ledger.get_costs(shop, previous.start, previous.end)

    current_sales, previous_sales = SalesData(), SalesData()
    current_products, previous_products = ProductCosts(), ProductCosts()
    error = None

    if revenue_source is None:
        error = "Shopify is not connected. Showing costs only."
    else:
        try:
            current_start, current_end = period.instants(tz_name)
            previous_start, previous_end = previous.instants(tz_name)
            current_sales = await revenue_source.fetch_sales(current_start, current_end)
            previous_sales = await revenue_source.fetch_sales(previous_start, previous_end)
            current_products = await revenue_source.fetch_product_costs(current_start, current_end)
            previous_products = await revenue_source.fetch_product_costs(previous_start, previous_end)
        except Exception as exc:
            logger.warning("[REPORT] Revenue unavailable for %s, falling back to costs only: %s", shop, exc)
            capture_exception(exc, extra={"shop": shop, "period": period.key})
            current_sales, previous_sales = SalesData(), SalesData()
            current_products, previous_products = ProductCosts(), ProductCosts()
            error = "Sales data could not be loaded. Showing costs only."

    metrics = compute_profit(current_sales, _costs_data(current_ledger, current_products), fee_percent)
    previous_metrics = compute_profit(previous_sales, _costs_data(previous_ledger, previous_products), fee_percent)

    if error is None:
        trends = compute_trends(metrics, previous_metrics)
    else:
        trends = {name: 0.0 for name in TRENDED_METRICS}

    targets = get_metric_targets(db, shop).as_dict()
    statuses = compute_target_statuses(metrics, targets, period.days)

    logger.info(
        "[REPORT] %s %s: sales=%.2f net=%.2f (%s)",
        shop, period.key, metrics.total_sales, metrics.net_profit, "ok" if error is None else "costs only",
    )

    return schemas.DashboardResponse(
        shop=shop,
        currency=shop_settings.currency,
        transaction_fee_percent=fee_percent,
        period=_period_out(period),
        previous_period=_period_out(previous),
        metrics=schemas.ProfitMetricsOut(**metrics.to_dict()),
        previous_metrics=schemas.ProfitMetricsOut(**previous_metrics.to_dict()),
        margins=compute_margins(metrics),
        distributions=compute_distributions(metrics),
        trends=trends,
        other_costs=current_ledger.manual.other,
        targets=targets,
        target_statuses={
            name: schemas.TargetStatusOut(label=status.label, **asdict(status))
            for name, status in statuses.items()
        },
        integrations=integration_statuses(db, shop),
        error=error,
    )
