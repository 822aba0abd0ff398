"""Money math helpers shared by the ledger, calculator and report service.

WHAT:
    Percentage-safe division, period-over-period trend and proration of
    recurring costs.

WHY:
    Every percentage on the dashboard goes through these so that a zero or
    non-finite denominator yields 0 instead of NaN/inf in a JSON payload.

REFERENCES:
    - shopprofit/services/profit_calculator.py (margins, distributions, trends)
    - shopprofit/services/cost_allocation.py (recurring fixed costs)
"""

import math

# Billing period that a recurring fixed cost amount is expressed in.
DEFAULT_PERIOD_BASIS_DAYS = 30


def safe_margin(numerator: float, denominator: float) -> float:
    """Return numerator / denominator as a percentage, 0 when undefined."""
    if not denominator or not math.isfinite(denominator):
        return 0.0
    result = (numerator / denominator) * 100
    if not math.isfinite(result):
        return 0.0
    return result


def trend(current: float, previous: float) -> float:
    """Percent change from previous to current.

    A previous value of 0 carries no signal and reports 0 rather than
    an infinite change.
    """
    if not previous or not math.isfinite(previous):
        return 0.0
    return ((current - previous) / previous) * 100


def prorate(amount: float, range_days: int, period_basis_days: int = DEFAULT_PERIOD_BASIS_DAYS) -> float:
    """Scale a per-period amount to a range of `range_days` days.

    Examples:
        prorate(300, 10) -> 100.0
        prorate(300, 45) -> 450.0
    """
    if period_basis_days <= 0 or range_days <= 0:
        return 0.0
    return amount * range_days / period_basis_days
