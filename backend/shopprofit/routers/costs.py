"""Costs endpoints.

WHAT: REST API for the Costs page (list / add / delete) and a range summary
WHY: Marketing, fixed and manual costs are entered by hand next to synced ad spend

REFERENCES:
  - shopprofit/services/cost_ledger.py: storage and aggregation
  - shopprofit/services/cost_allocation.py: fixed cost proration
  - shopprofit/schemas.py: cost schemas

Design decisions:
  - Manual marketing costs go through the same upsert as synced spend, so
    one (platform, day) pair holds one amount
  - All queries are shop-scoped at SQL level
"""

import logging
from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from shopprofit import schemas
from shopprofit.database import get_db
from shopprofit.deps import get_shop
from shopprofit.models import FixedCost, ManualCost, MarketingCost
from shopprofit.services.cost_ledger import CostLedger
from shopprofit.utils.periods import PeriodRange

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/shops",
    tags=["Costs"],
)

COST_MODELS = {
    "marketing": MarketingCost,
    "fixed": FixedCost,
    "manual": ManualCost,
}


def _marketing_out(row: MarketingCost) -> schemas.MarketingCostOut:
    return schemas.MarketingCostOut(
        id=row.id, platform=row.platform, amount=float(row.amount), date=row.date.date(), description=row.description,
    )


def _fixed_out(row: FixedCost) -> schemas.FixedCostOut:
    return schemas.FixedCostOut(
        id=row.id,
        category=row.category,
        name=row.name,
        amount=float(row.amount),
        start_date=row.start_date.date(),
        end_date=row.end_date.date() if row.end_date else None,
        recurring=row.recurring,
    )


def _manual_out(row: ManualCost) -> schemas.ManualCostOut:
    return schemas.ManualCostOut(
        id=row.id, category=row.category, description=row.description, amount=float(row.amount), date=row.date.date(),
    )


# ============================================================================
# LIST / SUMMARY
# ============================================================================

@router.get(
    "/{shop}/costs",
    response_model=schemas.CostsListResponse,
    summary="List costs",
)
def list_costs(shop: str = Depends(get_shop), db: Session = Depends(get_db)):
    """Latest marketing and manual costs (50 each) and all fixed costs."""
    ledger = CostLedger(db)
    return schemas.CostsListResponse(
        marketing_costs=[_marketing_out(row) for row in ledger.list_marketing_costs(shop)],
        fixed_costs=[_fixed_out(row) for row in ledger.list_fixed_costs(shop)],
        manual_costs=[_manual_out(row) for row in ledger.list_manual_costs(shop)],
    )


@router.get(
    "/{shop}/costs/summary",
    response_model=schemas.CostSummaryResponse,
    summary="Cost totals for a date range",
)
def get_cost_summary(
    start: date = Query(..., description="Range start (YYYY-MM-DD, inclusive)"),
    end: date = Query(..., description="Range end (YYYY-MM-DD, inclusive)"),
    shop: str = Depends(get_shop),
    db: Session = Depends(get_db),
):
    if end < start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must not be before start")

    period = PeriodRange("custom", start, end)
    costs = CostLedger(db).get_costs(shop, period.start, period.end)
    return schemas.CostSummaryResponse(
        start=start,
        end=end,
        marketing=costs.marketing,
        fixed=costs.fixed,
        manual=schemas.ManualCostBucketsOut(**costs.to_dict()["manual"]),
    )


# ============================================================================
# CREATE
# ============================================================================

@router.post(
    "/{shop}/costs/marketing",
    response_model=schemas.MarketingCostOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record marketing spend for one day",
)
def create_marketing_cost(
    payload: schemas.MarketingCostCreate,
    shop: str = Depends(get_shop),
    db: Session = Depends(get_db),
):
    """Create or replace the spend of (platform, date)."""
    row = CostLedger(db).upsert_daily_cost(shop, payload.platform, payload.date, payload.amount, payload.description)
    logger.info("[COSTS] Marketing cost %s %s = %.2f for %s", payload.platform, payload.date, payload.amount, shop)
    return _marketing_out(row)


@router.post(
    "/{shop}/costs/fixed",
    response_model=schemas.FixedCostOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add a fixed cost",
)
def create_fixed_cost(
    payload: schemas.FixedCostCreate,
    shop: str = Depends(get_shop),
    db: Session = Depends(get_db),
):
    row = CostLedger(db).add_fixed_cost(
        shop,
        category=payload.category,
        name=payload.name,
        amount=payload.amount,
        start_date=payload.start_date,
        end_date=payload.end_date,
        recurring=payload.recurring,
    )
    return _fixed_out(row)


@router.post(
    "/{shop}/costs/manual",
    response_model=schemas.ManualCostOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add a manual cost (shipping, cogs or other)",
)
def create_manual_cost(
    payload: schemas.ManualCostCreate,
    shop: str = Depends(get_shop),
    db: Session = Depends(get_db),
):
    row = CostLedger(db).add_manual_cost(
        shop, payload.category.value, payload.amount, payload.date, payload.description,
    )
    return _manual_out(row)


# ============================================================================
# DELETE
# ============================================================================

@router.delete(
    "/{shop}/costs/{kind}/{cost_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a cost",
)
def delete_cost(
    kind: str,
    cost_id: UUID,
    shop: str = Depends(get_shop),
    db: Session = Depends(get_db),
):
    model = COST_MODELS.get(kind)
    if model is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown cost kind: {kind}")

    if not CostLedger(db).delete_cost(model, shop, cost_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cost not found")
    return None
