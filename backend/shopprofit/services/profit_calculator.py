"""Profit metrics from revenue and reconciled costs.

WHAT:
    Pure functions: gross / contribution / net profit, margins, line-item
    distributions, period-over-period trends and monthly target status.

WHY:
    Dashboard numbers must be consistent between the current and the
    previous period and between the API and anything else that reuses
    them. Nothing here touches I/O and no input can make it raise: every
    division is guarded.

FORMULAS:
    transaction_fees    = total_sales * fee_percent / 100
    variable_costs      = shipping + cogs + transaction_fees
    gross_profit        = total_sales - variable_costs
    contribution_profit = gross_profit - marketing_costs
    net_profit          = contribution_profit - fixed_costs

REFERENCES:
    - shopprofit/utils/calculations.py (safe_margin, trend)
    - shopprofit/services/report_service.py (consumer)
"""

from dataclasses import asdict, dataclass
from typing import Dict, Optional

from shopprofit.utils.calculations import safe_margin, trend

# Projection basis for monthly targets
TARGET_BASIS_DAYS = 30
ON_TARGET_PERCENT = 100.0
NEAR_TARGET_PERCENT = 80.0

# Metrics compared period over period on the dashboard
TRENDED_METRICS = (
    "total_sales",
    "new_customer_revenue",
    "return_customer_revenue",
    "gross_profit",
    "contribution_profit",
    "net_profit",
    "variable_costs",
    "marketing_costs",
    "fixed_costs",
)


@dataclass
class SalesData:
    """Revenue of one range, produced by the revenue source."""
    total_sales: float = 0.0
    new_customer_revenue: float = 0.0
    return_customer_revenue: float = 0.0
    order_count: int = 0
    new_customer_count: int = 0
    return_customer_count: int = 0


@dataclass
class CostsData:
    shipping_costs: float = 0.0
    cogs: float = 0.0
    marketing_costs: float = 0.0
    fixed_costs: float = 0.0
    other_costs: float = 0.0


@dataclass
class ProfitMetrics:
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

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class TargetStatus:
    status: str  # "on_target" | "near_target" | "off_target"
    percent_of_target: float
    projected_value: float

    @property
    def label(self) -> str:
        return self.status.replace("_", " ").title()


def compute_profit(sales: SalesData, costs: CostsData, transaction_fee_percent: float) -> ProfitMetrics:
    """Combine revenue, costs and the fee rate into profit figures.

    `costs.other_costs` (manual "other" costs) are not part of the formulas;
    they are reported alongside.
    """
    transaction_fees = sales.total_sales * transaction_fee_percent / 100
    variable_costs = costs.shipping_costs + costs.cogs + transaction_fees
    gross_profit = sales.total_sales - variable_costs
    contribution_profit = gross_profit - costs.marketing_costs
    net_profit = contribution_profit - costs.fixed_costs

    return ProfitMetrics(
        total_sales=sales.total_sales,
        new_customer_revenue=sales.new_customer_revenue,
        return_customer_revenue=sales.return_customer_revenue,
        order_count=sales.order_count,
        new_customer_count=sales.new_customer_count,
        return_customer_count=sales.return_customer_count,
        shipping_costs=costs.shipping_costs,
        cogs=costs.cogs,
        transaction_fees=transaction_fees,
        variable_costs=variable_costs,
        gross_profit=gross_profit,
        marketing_costs=costs.marketing_costs,
        contribution_profit=contribution_profit,
        fixed_costs=costs.fixed_costs,
        net_profit=net_profit,
    )


def compute_margins(metrics: ProfitMetrics) -> Dict[str, float]:
    """Profit figures as a percentage of total sales."""
    return {
        "gross_margin": safe_margin(metrics.gross_profit, metrics.total_sales),
        "contribution_margin": safe_margin(metrics.contribution_profit, metrics.total_sales),
        "net_margin": safe_margin(metrics.net_profit, metrics.total_sales),
    }


def compute_distributions(metrics: ProfitMetrics) -> Dict[str, float]:
    """Every revenue and cost line as a percentage of total sales."""
    lines = (
        "new_customer_revenue",
        "return_customer_revenue",
        "shipping_costs",
        "cogs",
        "transaction_fees",
        "variable_costs",
        "gross_profit",
        "marketing_costs",
        "contribution_profit",
        "fixed_costs",
        "net_profit",
    )
    return {line: safe_margin(getattr(metrics, line), metrics.total_sales) for line in lines}


def trend_for(metric_name: str, current: ProfitMetrics, previous: ProfitMetrics) -> float:
    return trend(getattr(current, metric_name), getattr(previous, metric_name))


def compute_trends(current: ProfitMetrics, previous: ProfitMetrics) -> Dict[str, float]:
    return {name: trend_for(name, current, previous) for name in TRENDED_METRICS}


def target_status(value: float, monthly_target: Optional[float], period_days: int) -> Optional[TargetStatus]:
    """Classify `value` observed over `period_days` against a monthly target.

    The value is projected to 30 days (value / days * 30). Returns None when
    there is no target, the target is 0, or the period is empty.

    Example:
        target_status(450, 1000, 15) -> near_target at 90%
    """
    if not monthly_target or period_days <= 0:
        return None

    projected = value / period_days * TARGET_BASIS_DAYS
    percent = projected / monthly_target * 100

    if percent >= ON_TARGET_PERCENT:
        status = "on_target"
    elif percent >= NEAR_TARGET_PERCENT:
        status = "near_target"
    else:
        status = "off_target"
    return TargetStatus(status=status, percent_of_target=percent, projected_value=projected)


def compute_target_statuses(metrics: ProfitMetrics, targets: Dict[str, Optional[float]], period_days: int) -> Dict[str, TargetStatus]:
    """Statuses for every metric that has a target set."""
    statuses = {}
    for name, target in targets.items():
        status = target_status(getattr(metrics, name), target, period_days)
        if status is not None:
            statuses[name] = status
    return statuses
