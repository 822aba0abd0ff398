"""Tests for the dashboard report.

WHAT:
    Revenue + ledger costs -> metrics for the current and previous period,
    trends, targets, and the cost-only fallback when Shopify fails.

REFERENCES:
    shopprofit/services/report_service.py
"""

import asyncio
from datetime import date, datetime, timezone

import pytest

from shopprofit.schemas import MetricTargetsPayload
from shopprofit.services import report_service
from shopprofit.services.cost_ledger import CostLedger
from shopprofit.services.profit_calculator import SalesData
from shopprofit.services.report_service import build_dashboard_report
from shopprofit.services.revenue_service import ProductCosts
from shopprofit.services.settings_service import update_metric_targets
from shopprofit.services.shopify_client import ShopifyAPIError

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class _FakeRevenueSource:
    """Sales keyed by the first local day of the requested range."""

    def __init__(self, sales=None, products=None, error=None):
        self.sales = sales or {}
        self.products = products or {}
        self.error = error
        self.ranges = []

    async def fetch_sales(self, start, end):
        self.ranges.append((start, end))
        if self.error:
            raise self.error
        return self.sales.get(start.date(), SalesData())

    async def fetch_product_costs(self, start, end):
        return self.products.get(start.date(), ProductCosts())


@pytest.fixture
def ledger_costs(test_db_session, shop):
    ledger = CostLedger(test_db_session)
    ledger.upsert_daily_cost(shop, "google", date(2024, 3, 5), 100.0, "Google Ads spend")
    ledger.add_manual_cost(shop, "shipping", 20.0, date(2024, 3, 6))
    ledger.add_manual_cost(shop, "cogs", 30.0, date(2024, 3, 6))
    ledger.add_manual_cost(shop, "other", 7.0, date(2024, 3, 8))
    ledger.add_fixed_cost(shop, "software", "Helpdesk", 300.0, date(2024, 1, 1))
    return ledger


def _report(db, shop, source, period="last7days"):
    return asyncio.run(build_dashboard_report(db, shop, period, source, now=NOW))


def test_report_combines_revenue_and_ledger(test_db_session, shop, ledger_costs):
    source = _FakeRevenueSource(
        sales={
            date(2024, 3, 4): SalesData(total_sales=1000.0, new_customer_revenue=400.0, return_customer_revenue=600.0),
            date(2024, 2, 26): SalesData(total_sales=800.0),
        },
        products={date(2024, 3, 4): ProductCosts(cogs=170.0, shipping=30.0)},
    )

    report = _report(test_db_session, shop, source)

    assert report.error is None
    assert (report.period.start_date, report.period.end_date, report.period.days) == (date(2024, 3, 4), date(2024, 3, 10), 7)
    assert report.previous_period.start_date == date(2024, 2, 26)

    metrics = report.metrics
    assert metrics.shipping_costs == pytest.approx(50.0)
    assert metrics.cogs == pytest.approx(200.0)
    assert metrics.transaction_fees == pytest.approx(30.0)
    assert metrics.marketing_costs == pytest.approx(100.0)
    assert metrics.fixed_costs == pytest.approx(70.0)
    assert metrics.net_profit == pytest.approx(550.0)
    assert report.other_costs == pytest.approx(7.0)

    assert report.previous_metrics.total_sales == pytest.approx(800.0)
    assert report.trends["total_sales"] == pytest.approx(25.0)
    assert report.margins["gross_margin"] == pytest.approx(72.0)
    assert report.distributions["new_customer_revenue"] == pytest.approx(40.0)

    # Revenue is requested with the shop's local day bounds as instants
    assert source.ranges[0][0] == datetime(2024, 3, 4, tzinfo=timezone.utc)


def test_report_target_statuses(test_db_session, shop, ledger_costs):
    update_metric_targets(test_db_session, shop, MetricTargetsPayload(net_profit="2000", total_sales=""))
    source = _FakeRevenueSource(
        sales={date(2024, 3, 4): SalesData(total_sales=1000.0)},
        products={date(2024, 3, 4): ProductCosts(cogs=170.0, shipping=30.0)},
    )

    report = _report(test_db_session, shop, source)

    assert report.targets["net_profit"] == 2000.0
    assert report.targets["total_sales"] is None
    status = report.target_statuses["net_profit"]
    assert status.status == "on_target"
    assert status.label == "On Target"
    assert status.projected_value == pytest.approx(550.0 / 7 * 30)
    assert "total_sales" not in report.target_statuses


def test_shopify_failure_falls_back_to_costs_only(monkeypatch, test_db_session, shop, ledger_costs):
    captured = []
    monkeypatch.setattr(report_service, "capture_exception", lambda exc, extra=None: captured.append(exc))
    source = _FakeRevenueSource(error=ShopifyAPIError("Failed after 3 attempts", status_code=503))

    report = _report(test_db_session, shop, source)

    assert report.error
    assert report.metrics.total_sales == 0.0
    assert report.metrics.marketing_costs == pytest.approx(100.0)
    assert report.metrics.net_profit == pytest.approx(-(20.0 + 30.0 + 100.0 + 70.0))
    assert all(value == 0.0 for value in report.trends.values())
    assert all(value == 0.0 for value in report.margins.values())
    assert isinstance(captured[0], ShopifyAPIError)


def test_report_without_shopify_connection(test_db_session, shop, ledger_costs, connect):
    connect("google", selected_account_id="1")

    report = _report(test_db_session, shop, None)

    assert "not connected" in report.error
    assert report.metrics.total_sales == 0.0
    statuses = {item.platform: item.connected for item in report.integrations}
    assert statuses == {"shopify": False, "facebook": False, "google": True}


def test_report_uses_shop_settings(test_db_session, shop):
    from shopprofit.schemas import ShopSettingsUpdate
    from shopprofit.services.settings_service import update_shop_settings

    update_shop_settings(test_db_session, shop, ShopSettingsUpdate(transaction_fee_percent=2.0, currency="eur"))
    source = _FakeRevenueSource(sales={date(2024, 3, 10): SalesData(total_sales=500.0)})

    report = _report(test_db_session, shop, source, period="today")

    assert report.currency == "EUR"
    assert report.transaction_fee_percent == 2.0
    assert report.metrics.transaction_fees == pytest.approx(10.0)


def test_revenue_source_for_shop_requires_shopify_integration(test_db_session, shop, connect):
    assert report_service.revenue_source_for_shop(test_db_session, shop) is None

    connect("shopify", access_token="shpat_123")
    source = report_service.revenue_source_for_shop(test_db_session, shop)

    assert source.client.access_token == "shpat_123"
    assert source.client.shop_domain == shop
