"""Pydantic schemas for request/response payloads."""

import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import ManualCostCategoryEnum, TARGET_METRICS
from .utils.periods import is_valid_timezone


# ============================================================================
# Sync & Integrations
# ============================================================================

class SyncResult(BaseModel):
    """Outcome of one historical sync. Failures are results, never exceptions."""

    success: bool = Field(description="Whether the sync reconciled the full range")
    platform: Optional[str] = Field(default=None, description="Ad platform synced")
    account_id: Optional[str] = Field(default=None, description="External ad account that was read")
    total_amount: float = Field(default=0.0, description="Sum of spend written to the ledger")
    stored_days: int = Field(default=0, description="Days with spend upserted")
    error: Optional[str] = Field(default=None, description="User-facing error message")
    error_code: Optional[str] = Field(default=None, description="Stable error code, e.g. not_connected")

    def status_message(self) -> str:
        """Non-blocking status line for the UI."""
        if self.success:
            return f"Synced {self.stored_days} days, {self.total_amount:.2f} total spend"
        return f"Sync failed: {self.error}"


class SyncResponse(SyncResult):
    message: str = Field(description="Status line for display")


class AdAccountOut(BaseModel):
    id: str
    name: Optional[str] = None


class AccountSelectRequest(BaseModel):
    account_id: str = Field(min_length=1, description="External ad account id to track")


class CredentialsIn(BaseModel):
    """Credentials handed over by the OAuth flow (treated as opaque tokens)."""

    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = Field(default=None, description="Absolute expiry (UTC)")
    expires_in: Optional[int] = Field(default=None, ge=0, description="Seconds until expiry, used when expires_at is absent")
    scope: Optional[str] = None
    selected_account_id: Optional[str] = None
    login_customer_id: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "access_token": "ya29.a0Af...",
                "refresh_token": "1//0g...",
                "expires_in": 3599,
                "scope": "https://www.googleapis.com/auth/adwords",
            }
        }
    }


class IntegrationOut(BaseModel):
    platform: str
    is_active: bool
    last_sync: Optional[datetime] = None
    selected_account_id: Optional[str] = None
    sync_started: bool = Field(default=False, description="Whether an initial backfill was scheduled")


class IntegrationStatus(BaseModel):
    platform: str
    connected: bool
    last_sync: Optional[datetime] = None


# ============================================================================
# Costs
# ============================================================================

class MarketingCostCreate(BaseModel):
    platform: str = Field(default="manual", description="Platform tag; same (platform, date) replaces the amount")
    amount: float = Field(ge=0, allow_inf_nan=False)
    date: date
    description: Optional[str] = None


class MarketingCostOut(BaseModel):
    id: UUID
    platform: str
    amount: float
    date: date
    description: Optional[str] = None


class FixedCostCreate(BaseModel):
    category: str = Field(min_length=1, description='e.g. "software", "rent"')
    name: str = Field(min_length=1)
    amount: float = Field(ge=0, allow_inf_nan=False, description="Monthly amount when recurring, total when one-off")
    start_date: date
    end_date: Optional[date] = None
    recurring: bool = True

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class FixedCostOut(BaseModel):
    id: UUID
    category: str
    name: str
    amount: float
    start_date: date
    end_date: Optional[date] = None
    recurring: bool


class ManualCostCreate(BaseModel):
    category: ManualCostCategoryEnum
    description: Optional[str] = None
    amount: float = Field(ge=0, allow_inf_nan=False)
    date: date


class ManualCostOut(BaseModel):
    id: UUID
    category: str
    description: Optional[str] = None
    amount: float
    date: date


class CostsListResponse(BaseModel):
    marketing_costs: List[MarketingCostOut]
    fixed_costs: List[FixedCostOut]
    manual_costs: List[ManualCostOut]


class ManualCostBucketsOut(BaseModel):
    shipping: float = 0.0
    cogs: float = 0.0
    other: float = 0.0


class CostSummaryResponse(BaseModel):
    start: date
    end: date
    marketing: float
    fixed: float
    manual: ManualCostBucketsOut


# ============================================================================
# Settings & Targets
# ============================================================================

class ShopSettingsOut(BaseModel):
    shop: str
    transaction_fee_percent: float
    currency: str
    timezone: str

    model_config = {"from_attributes": True}


class ShopSettingsUpdate(BaseModel):
    transaction_fee_percent: Optional[float] = Field(default=None, ge=0, le=100)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_valid_timezone(value):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("currency")
    @classmethod
    def _upper(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


def parse_target_value(value: Any) -> Optional[float]:
    """Blank, non-numeric or non-finite input means "no target"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class MetricTargetsPayload(BaseModel):
    """Monthly targets; omitted or blank fields clear the target."""

    gross_profit: Optional[float] = None
    contribution_profit: Optional[float] = None
    net_profit: Optional[float] = None
    total_sales: Optional[float] = None
    new_customer_revenue: Optional[float] = None
    return_customer_revenue: Optional[float] = None
    variable_costs: Optional[float] = None
    marketing_costs: Optional[float] = None
    fixed_costs: Optional[float] = None

    @field_validator(*TARGET_METRICS, mode="before")
    @classmethod
    def _safe_number(cls, value: Any) -> Optional[float]:
        return parse_target_value(value)


# ============================================================================
# Dashboard
# ============================================================================

class PeriodOut(BaseModel):
    key: str
    start_date: date
    end_date: date
    days: int


class TargetStatusOut(BaseModel):
    status: str = Field(description="on_target | near_target | off_target")
    label: str
    percent_of_target: float
    projected_value: float


class ProfitMetricsOut(BaseModel):
    total_sales: float
    new_customer_revenue: float
    return_customer_revenue: float
    order_count: int
    new_customer_count: int
    return_customer_count: int
    shipping_costs: float
    cogs: float
    transaction_fees: float
    variable_costs: float
    gross_profit: float
    marketing_costs: float
    contribution_profit: float
    fixed_costs: float
    net_profit: float


class DashboardResponse(BaseModel):
    shop: str
    currency: str
    transaction_fee_percent: float
    period: PeriodOut
    previous_period: PeriodOut
    metrics: ProfitMetricsOut
    previous_metrics: ProfitMetricsOut
    margins: Dict[str, float]
    distributions: Dict[str, float]
    trends: Dict[str, float]
    other_costs: float = Field(description="Manual costs categorized as other (not part of profit formulas)")
    targets: Dict[str, Optional[float]]
    target_statuses: Dict[str, TargetStatusOut]
    integrations: List[IntegrationStatus]
    auto_sync_started: List[str] = Field(default_factory=list)
    error: Optional[str] = Field(default=None, description="Set when revenue could not be loaded")
