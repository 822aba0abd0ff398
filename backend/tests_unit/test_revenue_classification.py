"""
Revenue Classification Tests (Unit)
===================================

WHAT: Orders -> SalesData (new vs returning) and product costs.
WHY: New customer revenue depends on a heuristic; keep its rules pinned down.

REFERENCES:
- backend/shopprofit/services/revenue_service.py
"""

import asyncio
from datetime import datetime, timezone

import pytest

from shopprofit.services.revenue_service import (
    NewCustomerPolicy,
    ShopifyRevenueSource,
    classify_orders,
    is_new_customer_order,
    product_costs,
)
from shopprofit.services.shopify_client import ShopifyAPIError


def _order(amount, created_at, customer_id=None, first_visit=None, shipping=None, lines=()):
    order = {
        "createdAt": created_at,
        "totalPriceSet": {"shopMoney": {"amount": str(amount)}},
        "customer": {"id": customer_id} if customer_id else None,
        "customerJourneySummary": {"firstVisit": {"occurredAt": first_visit}} if first_visit else None,
        "lineItems": {"edges": [{"node": line} for line in lines]},
    }
    if shipping is not None:
        order["totalShippingPriceSet"] = {"shopMoney": {"amount": str(shipping)}}
    return order


ORDERS = [
    _order(100, "2024-03-01T10:00:00Z", "gid://shopify/Customer/1", first_visit="2024-03-01T08:00:00Z"),
    _order(50, "2024-03-02T10:00:00Z", "gid://shopify/Customer/1", first_visit="2024-03-01T08:00:00Z"),
    _order(80, "2024-03-05T10:00:00Z", "gid://shopify/Customer/2", first_visit="2024-03-01T10:00:00Z"),
    _order(20, "2024-03-05T11:00:00Z"),
    _order(30, "2024-03-06T09:00:00Z", "gid://shopify/Customer/3"),
]


def test_classify_orders_splits_new_and_returning() -> None:
    sales = classify_orders(ORDERS, NewCustomerPolicy())

    assert sales.total_sales == 280.0
    assert sales.order_count == 5
    assert sales.new_customer_revenue == 130.0
    assert sales.new_customer_count == 2
    assert sales.return_customer_revenue == 150.0
    assert sales.return_customer_count == 3


def test_customers_without_journey_can_count_as_returning() -> None:
    sales = classify_orders(ORDERS, NewCustomerPolicy(assume_new_without_journey=False))

    assert sales.new_customer_revenue == 100.0
    assert sales.return_customer_revenue == 180.0


def test_window_is_configurable() -> None:
    order = ORDERS[2]  # 96 hours after first visit
    assert not is_new_customer_order(order, NewCustomerPolicy(window_hours=24))
    assert is_new_customer_order(order, NewCustomerPolicy(window_hours=100))


def test_product_costs_from_unit_cost_and_shipping() -> None:
    orders = [
        _order(
            100, "2024-03-01T10:00:00Z", shipping=7.5,
            lines=[
                {"quantity": 2, "variant": {"inventoryItem": {"unitCost": {"amount": "5.00"}}}},
                {"quantity": 1, "variant": None},
            ],
        ),
        _order(40, "2024-03-02T10:00:00Z", shipping="2.50"),
    ]

    costs = product_costs(orders)

    assert costs.cogs == 10.0
    assert costs.shipping == 10.0


class _FakeShopifyClient:
    shop_domain = "demo.myshopify.com"

    def __init__(self, orders=None, order_costs=None, error=None, costs_error=None):
        self.orders = orders or []
        self.order_costs = order_costs or []
        self.error = error
        self.costs_error = costs_error

    async def get_orders(self, start, end):
        if self.error:
            raise self.error
        return self.orders

    async def get_order_costs(self, start, end):
        if self.costs_error or self.error:
            raise self.costs_error or self.error
        return self.order_costs

    async def get_shop(self):
        if self.error:
            raise self.error
        return {"name": "Demo", "currency": "EUR", "timezone": "Europe/Amsterdam"}


START = datetime(2024, 3, 1, tzinfo=timezone.utc)
END = datetime(2024, 3, 31, 23, 59, tzinfo=timezone.utc)

COSTED_ORDER = {
    "totalShippingPriceSet": {"shopMoney": {"amount": "4.00"}},
    "lineItems": {"edges": [
        {"node": {"quantity": 3, "variant": {"inventoryItem": {"unitCost": {"amount": "2.50"}}}}},
    ]},
}


def test_revenue_source_reads_sales_and_costs_from_separate_queries() -> None:
    source = ShopifyRevenueSource(_FakeShopifyClient(orders=ORDERS, order_costs=[COSTED_ORDER]))

    async def run():
        return await source.fetch_sales(START, END), await source.fetch_product_costs(START, END)

    sales, costs = asyncio.run(run())

    assert sales.total_sales == 280.0
    assert (costs.cogs, costs.shipping) == (7.5, 4.0)


def test_failed_product_costs_keep_sales() -> None:
    client = _FakeShopifyClient(orders=ORDERS, costs_error=ShopifyAPIError("Query cost exceeds limit"))
    source = ShopifyRevenueSource(client)

    async def run():
        return await source.fetch_sales(START, END), await source.fetch_product_costs(START, END)

    sales, costs = asyncio.run(run())

    assert sales.total_sales == 280.0
    assert sales.order_count == 5
    assert (costs.cogs, costs.shipping) == (0.0, 0.0)


def test_revenue_source_failures() -> None:
    source = ShopifyRevenueSource(_FakeShopifyClient(error=ShopifyAPIError("boom", status_code=500)))

    costs = asyncio.run(source.fetch_product_costs(START, END))
    assert (costs.cogs, costs.shipping) == (0.0, 0.0)
    assert asyncio.run(source.fetch_timezone()) is None

    with pytest.raises(ShopifyAPIError):
        asyncio.run(source.fetch_sales(START, END))
