"""Revenue data for the profit report.

WHAT:
    Turns Shopify orders into SalesData (total, new vs returning customer
    revenue and counts) and product costs (COGS from line item unit cost,
    shipping charged on orders).

WHY:
    The report needs revenue and cost of goods for the same range it reads
    from the cost ledger. They come from separate order queries, so missing
    COGS data only zeroes COGS and shipping while sales are still reported.

NEW CUSTOMER HEURISTIC:
    A customer's first order in the range counts as "new" when it was placed
    within `window_hours` of the customer's first recorded site visit. With
    no journey data the first order counts as new when
    `assume_new_without_journey` is set; this misclassifies returning
    customers without journey data, so it is configurable. Later orders of
    the same customer and guest orders count as returning.

REFERENCES:
    - shopprofit/services/shopify_client.py
    - shopprofit/services/report_service.py (consumer)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

from shopprofit.services.profit_calculator import SalesData
from shopprofit.services.shopify_client import ShopifyAPIError, ShopifyClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NewCustomerPolicy:
    window_hours: float = 24.0
    assume_new_without_journey: bool = True


@dataclass
class ProductCosts:
    cogs: float = 0.0
    shipping: float = 0.0


def _money(value: Optional[Dict[str, Any]]) -> float:
    """Amount of a Shopify MoneyBag/MoneyV2 node, 0 when missing."""
    if not value:
        return 0.0
    amount = value.get("shopMoney", value).get("amount") if isinstance(value, dict) else None
    try:
        return float(Decimal(str(amount))) if amount is not None else 0.0
    except InvalidOperation:
        return 0.0


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def is_new_customer_order(order: Dict[str, Any], policy: NewCustomerPolicy) -> bool:
    """Classify a customer's first order in the range."""
    first_visit = _parse_timestamp(
        ((order.get("customerJourneySummary") or {}).get("firstVisit") or {}).get("occurredAt")
    )
    if first_visit is None:
        return policy.assume_new_without_journey

    created_at = _parse_timestamp(order.get("createdAt"))
    if created_at is None:
        return False
    hours = (created_at - first_visit).total_seconds() / 3600
    return hours <= policy.window_hours


def classify_orders(orders: Iterable[Dict[str, Any]], policy: NewCustomerPolicy) -> SalesData:
    """Aggregate orders (oldest first) into SalesData."""
    sales = SalesData()
    seen_customers = set()

    for order in orders:
        amount = _money(order.get("totalPriceSet"))
        sales.total_sales += amount
        sales.order_count += 1

        customer_id = (order.get("customer") or {}).get("id")
        is_new = False
        if customer_id and customer_id not in seen_customers:
            seen_customers.add(customer_id)
            is_new = is_new_customer_order(order, policy)

        if is_new:
            sales.new_customer_revenue += amount
            sales.new_customer_count += 1
        else:
            sales.return_customer_revenue += amount
            sales.return_customer_count += 1

    return sales


def product_costs(orders: Iterable[Dict[str, Any]]) -> ProductCosts:
    """COGS (unit cost x quantity) and shipping charged across orders."""
    costs = ProductCosts()
    for order in orders:
        for edge in (order.get("lineItems") or {}).get("edges") or []:
            line = edge.get("node") or {}
            unit_cost = _money(((line.get("variant") or {}).get("inventoryItem") or {}).get("unitCost"))
            costs.cogs += unit_cost * (line.get("quantity") or 0)
        costs.shipping += _money(order.get("totalShippingPriceSet"))
    return costs


class ShopifyRevenueSource:
    """Revenue source backed by the Shopify Admin API."""

    def __init__(self, client: ShopifyClient, policy: Optional[NewCustomerPolicy] = None):
        self.client = client
        self.policy = policy or NewCustomerPolicy()

    async def fetch_sales(self, start: datetime, end: datetime) -> SalesData:
        """Raises ShopifyAPIError when orders cannot be loaded."""
        sales = classify_orders(await self.client.get_orders(start, end), self.policy)
        logger.info(
            "[REVENUE] %s: sales=%.2f new=%.2f returning=%.2f orders=%d",
            self.client.shop_domain, sales.total_sales, sales.new_customer_revenue,
            sales.return_customer_revenue, sales.order_count,
        )
        return sales

    async def fetch_product_costs(self, start: datetime, end: datetime) -> ProductCosts:
        """COGS and shipping; zeros when Shopify is unavailable."""
        try:
            return product_costs(await self.client.get_order_costs(start, end))
        except ShopifyAPIError as exc:
            logger.warning("[REVENUE] Product costs unavailable for %s: %s", self.client.shop_domain, exc)
            return ProductCosts()

    async def fetch_timezone(self) -> Optional[str]:
        try:
            return (await self.client.get_shop()).get("timezone")
        except ShopifyAPIError as exc:
            logger.warning("[REVENUE] Shop timezone unavailable for %s: %s", self.client.shop_domain, exc)
            return None
