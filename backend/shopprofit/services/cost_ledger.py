"""Cost ledger: persisted marketing, fixed and manual costs.

WHAT:
    Range aggregation over the three cost tables, the idempotent daily
    upsert used by historical sync, and the CRUD used by the costs page.

WHY:
    Reports never call ad platforms; they read the ledger. The ledger owns
    the reconciliation key (shop, platform, calendar day) and its conflict
    rule: the newest write for a key replaces the amount, it never adds.

DATE HANDLING:
    Days are stored as naive datetimes at midnight. Range queries use
    inclusive start-of-day .. end-of-day bounds (see utils/periods.py).

REFERENCES:
    - shopprofit/models.py: MarketingCost, FixedCost, ManualCost
    - shopprofit/services/cost_allocation.py: fixed cost proration
    - shopprofit/services/historical_sync_service.py: upsert_daily_cost caller
    - shopprofit/routers/costs.py: CRUD endpoints
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional, Union
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from shopprofit.models import FixedCost, ManualCost, ManualCostCategoryEnum, MarketingCost
from shopprofit.services.cost_allocation import get_allocated_costs
from shopprofit.services.errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


@dataclass
class ManualCostBuckets:
    shipping: float = 0.0
    cogs: float = 0.0
    other: float = 0.0


@dataclass
class LedgerCosts:
    """Costs of one range as returned by `CostLedger.get_costs`."""
    marketing: float = 0.0
    fixed: float = 0.0
    manual: ManualCostBuckets = field(default_factory=ManualCostBuckets)

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_day(value: Union[date, datetime]) -> datetime:
    """Midnight of the calendar day of `value` (naive)."""
    if isinstance(value, datetime):
        value = value.date()
    return datetime(value.year, value.month, value.day)


def normalize_amount(amount: float) -> float:
    """Round to cents. Amounts must be finite and non-negative."""
    amount = float(amount)
    if not math.isfinite(amount) or amount < 0:
        raise ValueError(f"Cost amount must be a finite, non-negative number, got {amount}")
    return round(amount, 2)


class CostLedger:
    """Per-session access to the cost tables.

    Usage:
        ledger = CostLedger(db)
        ledger.upsert_daily_cost(shop, "google", date(2024, 3, 1), 41.5, "Google Ads spend")
        costs = ledger.get_costs(shop, period.start, period.end)
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # AGGREGATION
    # =========================================================================

    def sum_marketing_costs(self, shop: str, start: datetime, end: datetime) -> float:
        """Marketing spend across all platforms with `date` in [start, end]."""
        total = (
            self.db.query(func.coalesce(func.sum(MarketingCost.amount), 0))
            .filter(
                MarketingCost.shop == shop,
                MarketingCost.date >= start,
                MarketingCost.date <= end,
            )
            .scalar()
        )
        return float(total or 0)

    def sum_fixed_costs(self, shop: str, start: datetime, end: datetime) -> float:
        """Fixed costs allocated to [start, end], see cost_allocation."""
        candidates = (
            self.db.query(FixedCost)
            .filter(FixedCost.shop == shop, FixedCost.start_date <= end)
            .all()
        )
        return get_allocated_costs(candidates, start.date(), end.date())

    def sum_manual_costs(self, shop: str, start: datetime, end: datetime) -> ManualCostBuckets:
        """Manual costs in range bucketed into shipping, cogs and other."""
        rows = (
            self.db.query(ManualCost.category, func.sum(ManualCost.amount))
            .filter(
                ManualCost.shop == shop,
                ManualCost.date >= start,
                ManualCost.date <= end,
            )
            .group_by(ManualCost.category)
            .all()
        )

        buckets = ManualCostBuckets()
        for category, total in rows:
            amount = float(total or 0)
            if category == ManualCostCategoryEnum.shipping.value:
                buckets.shipping += amount
            elif category == ManualCostCategoryEnum.cogs.value:
                buckets.cogs += amount
            else:
                buckets.other += amount
        return buckets

    def get_costs(self, shop: str, start: datetime, end: datetime) -> LedgerCosts:
        return LedgerCosts(
            marketing=self.sum_marketing_costs(shop, start, end),
            fixed=self.sum_fixed_costs(shop, start, end),
            manual=self.sum_manual_costs(shop, start, end),
        )

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    def _find_daily_cost(self, shop: str, platform: str, day: datetime) -> Optional[MarketingCost]:
        # Match the whole calendar day so rows written with a time part still collide
        return (
            self.db.query(MarketingCost)
            .filter(
                MarketingCost.shop == shop,
                MarketingCost.platform == platform,
                MarketingCost.date >= day,
                MarketingCost.date < day + timedelta(days=1),
            )
            .first()
        )

    def upsert_daily_cost(
        self,
        shop: str,
        platform: str,
        day: Union[date, datetime],
        amount: float,
        description: Optional[str] = None,
    ) -> MarketingCost:
        """Create or replace the cost of (shop, platform, calendar day).

        Later calls overwrite the amount. Each call commits on its own so a
        sync interrupted halfway keeps the days already written.

        Raises:
            PersistenceError: The store rejected the write.
        """
        key = normalize_day(day)
        amount = normalize_amount(amount)

        try:
            record = self._find_daily_cost(shop, platform, key)
            if record is None:
                record = MarketingCost(shop=shop, platform=platform, date=key, amount=amount, description=description)
                self.db.add(record)
            else:
                record.amount = amount
                record.description = description
            self.db.commit()

        except IntegrityError:
            # A concurrent writer inserted the same key first; newest write still wins
            self.db.rollback()
            logger.info("[COST_LEDGER] Insert raced for %s/%s %s, updating instead", shop, platform, key.date())
            record = self._overwrite_after_conflict(shop, platform, key, amount, description)

        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("[COST_LEDGER] Upsert failed for %s/%s %s: %s", shop, platform, key.date(), exc)
            raise PersistenceError(f"Could not store {platform} cost for {key.date()}", platform=platform) from exc

        return record

    def _overwrite_after_conflict(self, shop, platform, key, amount, description) -> MarketingCost:
        try:
            record = self._find_daily_cost(shop, platform, key)
            if record is None:
                raise PersistenceError(f"Conflicting {platform} cost for {key.date()} disappeared", platform=platform)
            record.amount = amount
            record.description = description
            self.db.commit()
            return record
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Could not store {platform} cost for {key.date()}", platform=platform) from exc

    # =========================================================================
    # COSTS PAGE (list / add / delete)
    # =========================================================================

    def list_marketing_costs(self, shop: str, limit: int = DEFAULT_LIST_LIMIT) -> List[MarketingCost]:
        return (
            self.db.query(MarketingCost)
            .filter(MarketingCost.shop == shop)
            .order_by(MarketingCost.date.desc())
            .limit(limit)
            .all()
        )

    def list_fixed_costs(self, shop: str) -> List[FixedCost]:
        return (
            self.db.query(FixedCost)
            .filter(FixedCost.shop == shop)
            .order_by(FixedCost.start_date.desc())
            .all()
        )

    def list_manual_costs(self, shop: str, limit: int = DEFAULT_LIST_LIMIT) -> List[ManualCost]:
        return (
            self.db.query(ManualCost)
            .filter(ManualCost.shop == shop)
            .order_by(ManualCost.date.desc())
            .limit(limit)
            .all()
        )

    def add_fixed_cost(
        self,
        shop: str,
        category: str,
        name: str,
        amount: float,
        start_date: Union[date, datetime],
        end_date: Optional[Union[date, datetime]] = None,
        recurring: bool = True,
    ) -> FixedCost:
        cost = FixedCost(
            shop=shop,
            category=category,
            name=name,
            amount=normalize_amount(amount),
            start_date=normalize_day(start_date),
            end_date=normalize_day(end_date) if end_date else None,
            recurring=recurring,
        )
        return self._save(cost)

    def add_manual_cost(
        self,
        shop: str,
        category: str,
        amount: float,
        day: Union[date, datetime],
        description: Optional[str] = None,
    ) -> ManualCost:
        cost = ManualCost(
            shop=shop,
            category=ManualCostCategoryEnum(category).value,
            description=description,
            amount=normalize_amount(amount),
            date=normalize_day(day),
        )
        return self._save(cost)

    def delete_cost(self, model, shop: str, cost_id: UUID) -> bool:
        """Delete one cost row owned by `shop`. False when not found."""
        cost = self.db.query(model).filter(model.id == cost_id, model.shop == shop).first()
        if cost is None:
            return False
        self.db.delete(cost)
        self.db.commit()
        logger.info("[COST_LEDGER] Deleted %s %s for %s", model.__tablename__, cost_id, shop)
        return True

    def _save(self, record):
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Could not save {record.__tablename__} row") from exc
        return record
