"""Shopify GraphQL Admin API client.

WHAT:
    Wrapper for the Shopify Admin GraphQL API with:
    - Authentication header handling
    - Rate limiting (2 requests/second)
    - Cursor-based pagination of orders
    - Error handling and retries

WHY:
    Orders are the revenue source of the profit report: totals, customer
    journey data for new/returning classification, line item unit costs
    (COGS) and shipping charged.

REFERENCES:
    - Shopify GraphQL Admin API: https://shopify.dev/docs/api/admin-graphql
    - Rate limits: https://shopify.dev/docs/api/usage/rate-limits
    - shopprofit/services/revenue_service.py (consumer)
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-07"

# Shopify allows 2 requests/second for regular apps
RATE_LIMIT_DELAY = 0.5

ORDERS_PAGE_SIZE = 250
MAX_ORDER_PAGES = 40

ORDERS_QUERY = """
query GetOrders($query: String!, $cursor: String) {
    orders(first: %d, after: $cursor, query: $query, sortKey: CREATED_AT) {
        edges {
            node {
                id
                createdAt
                totalPriceSet { shopMoney { amount } }
                customerJourneySummary { firstVisit { occurredAt } }
                customer { id }
            }
        }
        pageInfo { hasNextPage endCursor }
    }
}
""" % ORDERS_PAGE_SIZE

# Nested line items multiply query cost; 15 x 50 stays under the
# 1000-point single query limit.
ORDER_COSTS_PAGE_SIZE = 15
LINE_ITEMS_PAGE_SIZE = 50
MAX_ORDER_COSTS_PAGES = 400

ORDER_COSTS_QUERY = """
query GetOrderCosts($query: String!, $cursor: String) {
    orders(first: %d, after: $cursor, query: $query, sortKey: CREATED_AT) {
        edges {
            node {
                id
                totalShippingPriceSet { shopMoney { amount } }
                lineItems(first: %d) {
                    edges {
                        node {
                            quantity
                            variant { inventoryItem { unitCost { amount } } }
                        }
                    }
                }
            }
        }
        pageInfo { hasNextPage endCursor }
    }
}
""" % (ORDER_COSTS_PAGE_SIZE, LINE_ITEMS_PAGE_SIZE)


class ShopifyAPIError(Exception):
    """Custom exception for Shopify API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[List] = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class ShopifyClient:
    """GraphQL client for the Shopify Admin API.

    Usage:
        client = ShopifyClient(shop_domain="mystore.myshopify.com", access_token="shpat_xxx")
        shop = await client.get_shop()
        orders = await client.get_orders(start, end)
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limit_delay: float = RATE_LIMIT_DELAY,
    ):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version
        self.base_url = f"https://{shop_domain}/admin/api/{api_version}/graphql.json"
        self._transport = transport
        self._rate_limit_delay = rate_limit_delay
        self._last_request_time: float = 0

    async def _rate_limit(self) -> None:
        elapsed = time.monotonic() - self._last_request_time
        if elapsed < self._rate_limit_delay:
            wait_time = self._rate_limit_delay - elapsed
            logger.debug("[SHOPIFY_CLIENT] Rate limiting: waiting %.3fs", wait_time)
            await asyncio.sleep(wait_time)
        self._last_request_time = time.monotonic()

    async def execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        retries: int = 3,
    ) -> Dict[str, Any]:
        """Execute a GraphQL query with rate limiting and retries.

        Raises:
            ShopifyAPIError: If the query fails after all retries or returns
                GraphQL errors other than throttling.
        """
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }

        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        last_error: Optional[Exception] = None

        for attempt in range(retries):
            await self._rate_limit()
            try:
                async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
                    response = await client.post(self.base_url, json=payload, headers=headers)

                if response.status_code == 429:
                    retry_after = float(response.headers.get("Retry-After", 2))
                    logger.warning(
                        "[SHOPIFY_CLIENT] Rate limited, waiting %ss (attempt %d/%d)",
                        retry_after, attempt + 1, retries,
                    )
                    last_error = ShopifyAPIError("Rate limited", status_code=429)
                    await asyncio.sleep(retry_after)
                    continue

                response.raise_for_status()
                try:
                    data = response.json()
                except ValueError as e:
                    raise ShopifyAPIError("Shopify returned a non-JSON response", status_code=response.status_code) from e
                if not isinstance(data, dict):
                    raise ShopifyAPIError("Shopify returned an unexpected response", status_code=response.status_code)

                if data.get("errors"):
                    errors = data["errors"]
                    error_messages = [e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors]
                    if any("throttled" in msg.lower() for msg in error_messages):
                        logger.warning("[SHOPIFY_CLIENT] Throttled, waiting 2s")
                        last_error = ShopifyAPIError("Throttled", errors=errors)
                        await asyncio.sleep(2)
                        continue
                    logger.error("[SHOPIFY_CLIENT] GraphQL errors: %s", error_messages)
                    raise ShopifyAPIError(f"GraphQL errors: {', '.join(error_messages)}", errors=errors)

                return data.get("data") or {}

            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    "[SHOPIFY_CLIENT] HTTP error %d (attempt %d/%d)", e.response.status_code, attempt + 1, retries,
                )
                if e.response.status_code in (401, 403):
                    raise ShopifyAPIError("Shopify rejected the access token", status_code=e.response.status_code) from e
                if attempt < retries - 1:
                    await asyncio.sleep(1 * (attempt + 1))

            except httpx.RequestError as e:
                last_error = e
                logger.warning("[SHOPIFY_CLIENT] Request error: %s (attempt %d/%d)", e, attempt + 1, retries)
                if attempt < retries - 1:
                    await asyncio.sleep(1 * (attempt + 1))

        raise ShopifyAPIError(f"Failed after {retries} attempts: {last_error}")

    # =========================================================================
    # SHOP
    # =========================================================================

    async def get_shop(self) -> Dict[str, Any]:
        """Shop currency and IANA timezone."""
        data = await self.execute("query GetShop { shop { name currencyCode ianaTimezone } }")
        shop = data.get("shop") or {}
        return {
            "name": shop.get("name"),
            "currency": shop.get("currencyCode", "USD"),
            "timezone": shop.get("ianaTimezone", "UTC"),
        }

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def _paginate_orders(
        self, query: str, start: datetime, end: datetime, max_pages: int,
    ) -> List[Dict[str, Any]]:
        search = f"created_at:>='{start.isoformat()}' AND created_at:<='{end.isoformat()}'"
        orders: List[Dict[str, Any]] = []
        cursor: Optional[str] = None

        for _ in range(max_pages):
            data = await self.execute(query, {"query": search, "cursor": cursor})
            connection = data.get("orders") or {}
            orders.extend(edge["node"] for edge in connection.get("edges") or [] if edge.get("node"))

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")
        else:
            logger.warning("[SHOPIFY_CLIENT] Stopped after %d order pages for %s", max_pages, self.shop_domain)

        return orders

    async def get_orders(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Orders created in [start, end], oldest first: totals and customer journey.

        Args:
            start, end: Aware instants; converted to ISO-8601 for the search query.
        """
        orders = await self._paginate_orders(ORDERS_QUERY, start, end, MAX_ORDER_PAGES)
        logger.info("[SHOPIFY_CLIENT] Fetched %d orders for %s", len(orders), self.shop_domain)
        return orders

    async def get_order_costs(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Shipping and line item unit costs of orders created in [start, end].

        Separate from get_orders because line items make the query expensive;
        a failure here must not cost the report its sales figures.
        """
        orders = await self._paginate_orders(ORDER_COSTS_QUERY, start, end, MAX_ORDER_COSTS_PAGES)
        logger.info("[SHOPIFY_CLIENT] Fetched costs of %d orders for %s", len(orders), self.shop_domain)
        return orders
