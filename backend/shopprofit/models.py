"""SQLAlchemy ORM models and enums.

Every table is scoped by `shop` (the merchant's myshopify domain). Cost rows
store their calendar day as a naive datetime at local midnight; money is
Numeric(12, 2) and converted with float() at the service boundary.
Integration credentials are a Fernet-encrypted JSON blob, never plaintext.
"""

import uuid
from datetime import datetime, timezone
import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import declarative_base


# Single Base used by the entire application
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums ---------------------------------------------------------

class PlatformEnum(str, enum.Enum):
    facebook = "facebook"
    google = "google"
    shopify = "shopify"  # revenue source, not an ad platform
    manual = "manual"  # marketing spend typed in by the merchant


AD_PLATFORMS = (PlatformEnum.facebook, PlatformEnum.google)


class ManualCostCategoryEnum(str, enum.Enum):
    shipping = "shipping"
    cogs = "cogs"
    other = "other"


# Cost ledger ---------------------------------------------------

class MarketingCost(Base):
    """One day of ad spend for one platform.

    WHAT: Canonical ledger row written by historical sync (and manual entry)
    WHY: Reports sum marketing spend per range without calling ad platforms
    REFERENCES:
      - shopprofit/services/cost_ledger.py: upsert_daily_cost (create-or-replace)
      - shopprofit/services/historical_sync_service.py: reconciliation

    The (shop, platform, date) key is unique; re-syncing a day overwrites
    its amount.
    """
    __tablename__ = "marketing_costs"
    __table_args__ = (
        UniqueConstraint("shop", "platform", "date", name="uq_marketing_cost_shop_platform_date"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    platform = Column(String, nullable=False)  # "facebook", "google", "manual"
    amount = Column(Numeric(12, 2), nullable=False)
    date = Column(DateTime, nullable=False)  # local midnight of the spend day
    description = Column(String, nullable=True)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    def __str__(self):
        return f"{self.platform} {self.date:%Y-%m-%d}: {self.amount}"


class FixedCost(Base):
    """Overhead such as software subscriptions or rent.

    Recurring costs are monthly amounts prorated over any overlapping query
    range; one-off costs count in full when `start_date` falls in the range.
    """
    __tablename__ = "fixed_costs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False)  # "software", "rent", "salaries", ...
    name = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)  # open-ended when null
    recurring = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    def __str__(self):
        return self.name


class ManualCost(Base):
    """Per-day cost entered by the merchant (extra shipping, COGS, other)."""
    __tablename__ = "manual_costs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False)  # ManualCostCategoryEnum value
    description = Column(String, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    date = Column(DateTime, nullable=False)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    def __str__(self):
        return f"{self.category}: {self.description or ''}"


# Integrations --------------------------------------------------

class Integration(Base):
    """Connection between a shop and an external platform.

    WHAT: Holds encrypted credentials, the active flag and the last sync time
    WHY: Sync and reporting only consider active integrations; `last_sync`
         throttles automatic background refresh
    REFERENCES:
      - shopprofit/services/credentials.py: typed decoding of `credentials`
      - shopprofit/services/token_service.py: the only writer of `credentials`
    """
    __tablename__ = "integrations"
    __table_args__ = (UniqueConstraint("shop", "platform", name="uq_integration_shop_platform"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    platform = Column(Enum(PlatformEnum), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    credentials = Column(Text, nullable=True)  # Fernet ciphertext of JSON
    last_sync = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    def __str__(self):
        return f"{self.shop} / {self.platform.value if self.platform else '?'}"


# Per-shop configuration ----------------------------------------

class ShopSettings(Base):
    __tablename__ = "shop_settings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, unique=True)
    transaction_fee_percent = Column(Float, nullable=False, default=3.0)
    currency = Column(String, nullable=False, default="USD")
    timezone = Column(String, nullable=False, default="UTC")  # IANA name

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


TARGET_METRICS = (
    "gross_profit",
    "contribution_profit",
    "net_profit",
    "total_sales",
    "new_customer_revenue",
    "return_customer_revenue",
    "variable_costs",
    "marketing_costs",
    "fixed_costs",
)


class MetricTargets(Base):
    """Monthly goals per metric. A null target disables its status."""
    __tablename__ = "metric_targets"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, unique=True)

    gross_profit = Column(Numeric(12, 2), nullable=True)
    contribution_profit = Column(Numeric(12, 2), nullable=True)
    net_profit = Column(Numeric(12, 2), nullable=True)
    total_sales = Column(Numeric(12, 2), nullable=True)
    new_customer_revenue = Column(Numeric(12, 2), nullable=True)
    return_customer_revenue = Column(Numeric(12, 2), nullable=True)
    variable_costs = Column(Numeric(12, 2), nullable=True)
    marketing_costs = Column(Numeric(12, 2), nullable=True)
    fixed_costs = Column(Numeric(12, 2), nullable=True)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    def as_dict(self):
        """Targets as floats, None where unset."""
        return {
            name: (float(getattr(self, name)) if getattr(self, name) is not None else None)
            for name in TARGET_METRICS
        }
