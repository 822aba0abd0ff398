"""Shop settings and metric targets endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shopprofit import schemas
from shopprofit.database import get_db
from shopprofit.deps import get_shop
from shopprofit.services.settings_service import (
    get_metric_targets,
    get_shop_settings,
    update_metric_targets,
    update_shop_settings,
)

router = APIRouter(
    prefix="/shops",
    tags=["Settings"],
)


@router.get("/{shop}/settings", response_model=schemas.ShopSettingsOut)
def read_settings(shop: str = Depends(get_shop), db: Session = Depends(get_db)):
    return get_shop_settings(db, shop)


@router.put("/{shop}/settings", response_model=schemas.ShopSettingsOut)
def write_settings(
    payload: schemas.ShopSettingsUpdate,
    shop: str = Depends(get_shop),
    db: Session = Depends(get_db),
):
    """Partial update: omitted fields keep their value."""
    return update_shop_settings(db, shop, payload)


@router.get("/{shop}/targets", response_model=schemas.MetricTargetsPayload)
def read_targets(shop: str = Depends(get_shop), db: Session = Depends(get_db)):
    return schemas.MetricTargetsPayload(**get_metric_targets(db, shop).as_dict())


@router.put("/{shop}/targets", response_model=schemas.MetricTargetsPayload)
def write_targets(
    payload: schemas.MetricTargetsPayload,
    shop: str = Depends(get_shop),
    db: Session = Depends(get_db),
):
    """Replace monthly targets. Blank or invalid values clear a target."""
    return schemas.MetricTargetsPayload(**update_metric_targets(db, shop, payload).as_dict())
