"""
Shopify Client Tests (Unit)
===========================

WHAT: GraphQL requests and error surfacing against httpx.MockTransport.
WHY: Sales and product costs use separate queries so an expensive or failing
     COGS query cannot take the sales figures down with it.

REFERENCES:
- backend/shopprofit/services/shopify_client.py
- backend/shopprofit/services/revenue_service.py
"""

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from shopprofit.services.revenue_service import ShopifyRevenueSource
from shopprofit.services.shopify_client import ShopifyAPIError, ShopifyClient

START = datetime(2024, 3, 1, tzinfo=timezone.utc)
END = datetime(2024, 3, 31, 23, 59, tzinfo=timezone.utc)

ORDER = {
    "id": "gid://shopify/Order/1",
    "createdAt": "2024-03-02T10:00:00Z",
    "totalPriceSet": {"shopMoney": {"amount": "120.00"}},
    "customerJourneySummary": None,
    "customer": {"id": "gid://shopify/Customer/1"},
}


def _orders_page(nodes, has_next=False, cursor=None):
    return {"data": {"orders": {
        "edges": [{"node": node} for node in nodes],
        "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
    }}}


def _client(handler) -> ShopifyClient:
    return ShopifyClient(
        "demo.myshopify.com", "shpat_test", transport=httpx.MockTransport(handler), rate_limit_delay=0,
    )


def test_sales_query_does_not_request_line_items():
    queries = []

    def handler(request):
        queries.append(json.loads(request.content)["query"])
        return httpx.Response(200, json=_orders_page([ORDER]))

    orders = asyncio.run(_client(handler).get_orders(START, END))

    assert orders == [ORDER]
    assert "GetOrders" in queries[0]
    assert "lineItems" not in queries[0]


def test_order_costs_follow_cursor_pages():
    cursors = []

    def handler(request):
        body = json.loads(request.content)
        assert "GetOrderCosts" in body["query"]
        cursors.append(body["variables"].get("cursor"))
        if body["variables"].get("cursor") is None:
            return httpx.Response(200, json=_orders_page([{"id": "1"}], has_next=True, cursor="c1"))
        return httpx.Response(200, json=_orders_page([{"id": "2"}]))

    orders = asyncio.run(_client(handler).get_order_costs(START, END))

    assert [order["id"] for order in orders] == ["1", "2"]
    assert cursors == [None, "c1"]


def test_cost_query_failure_keeps_sales():
    def handler(request):
        query = json.loads(request.content)["query"]
        if "GetOrderCosts" in query:
            return httpx.Response(200, json={"errors": [
                {"message": "Query cost is 2550, which exceeds the single query max cost limit (1000)."},
            ]})
        return httpx.Response(200, json=_orders_page([ORDER]))

    source = ShopifyRevenueSource(_client(handler))

    async def run():
        return await source.fetch_sales(START, END), await source.fetch_product_costs(START, END)

    sales, costs = asyncio.run(run())

    assert sales.total_sales == 120.0
    assert (costs.cogs, costs.shipping) == (0.0, 0.0)


def test_non_json_body_is_an_api_error():
    client = _client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(ShopifyAPIError):
        asyncio.run(client.get_shop())


def test_non_json_shop_response_leaves_timezone_unknown():
    source = ShopifyRevenueSource(_client(lambda request: httpx.Response(200, text="not json")))

    assert asyncio.run(source.fetch_timezone()) is None
