"""Per-shop settings and metric targets.

Both are get-or-create: a shop that never opened the settings page still
gets a 3% transaction fee, USD and UTC, and no targets.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopprofit.models import TARGET_METRICS, MetricTargets, ShopSettings
from shopprofit.schemas import MetricTargetsPayload, ShopSettingsUpdate

logger = logging.getLogger(__name__)

DEFAULT_TRANSACTION_FEE_PERCENT = 3.0
DEFAULT_CURRENCY = "USD"
DEFAULT_TIMEZONE = "UTC"


def _get_or_create(db: Session, model, shop: str, **defaults):
    row = db.query(model).filter(model.shop == shop).first()
    if row is not None:
        return row

    row = model(shop=shop, **defaults)
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # Created by a concurrent request
        db.rollback()
        return db.query(model).filter(model.shop == shop).one()
    db.refresh(row)
    logger.info("[SETTINGS] Created default %s for %s", model.__tablename__, shop)
    return row


def get_shop_settings(db: Session, shop: str) -> ShopSettings:
    return _get_or_create(
        db,
        ShopSettings,
        shop,
        transaction_fee_percent=DEFAULT_TRANSACTION_FEE_PERCENT,
        currency=DEFAULT_CURRENCY,
        timezone=DEFAULT_TIMEZONE,
    )


def update_shop_settings(db: Session, shop: str, update: ShopSettingsUpdate) -> ShopSettings:
    settings = get_shop_settings(db, shop)
    for field, value in update.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(settings, field, value)
    db.commit()
    db.refresh(settings)
    return settings


def set_shop_timezone(db: Session, shop: str, timezone_name: Optional[str]) -> None:
    """Store the timezone reported by Shopify, if any."""
    if not timezone_name:
        return
    settings = get_shop_settings(db, shop)
    if settings.timezone != timezone_name:
        settings.timezone = timezone_name
        db.commit()
        logger.info("[SETTINGS] Timezone of %s set to %s", shop, timezone_name)


def get_metric_targets(db: Session, shop: str) -> MetricTargets:
    return _get_or_create(db, MetricTargets, shop)


def update_metric_targets(db: Session, shop: str, payload: MetricTargetsPayload) -> MetricTargets:
    """Replace all targets; fields left out or blank become null."""
    targets = get_metric_targets(db, shop)
    for name in TARGET_METRICS:
        setattr(targets, name, getattr(payload, name))
    db.commit()
    db.refresh(targets)
    return targets
