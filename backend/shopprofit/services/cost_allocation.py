"""Fixed cost allocation logic.

WHAT: Decides how much of each fixed cost a reporting range carries
WHY: A monthly subscription must show up as ~1/3 of its amount in a 10-day report
REFERENCES:
  - shopprofit/services/cost_ledger.py: sum_fixed_costs
  - shopprofit/models.py:FixedCost: Data model
  - tests_unit/test_cost_allocation.py: Unit tests

Allocation rules (range is inclusive, whole days):
  - recurring: if [start_date, end_date or open] overlaps the range,
    contributes prorate(amount, range_days) with a 30-day basis
  - one-off:   contributes the full amount only if start_date lies in the range
"""

from datetime import date, datetime
from typing import Iterable, Optional, Union

from shopprofit.utils.calculations import prorate


def _as_date(value: Optional[Union[date, datetime]]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def calculate_allocated_amount(cost, range_start: date, range_end: date) -> float:
    """Portion of one fixed cost that falls in [range_start, range_end].

    Examples:
        recurring 300, range 2024-01-01..2024-01-10        -> 100.0
        recurring 300 ended 2023-12-31, same range          -> 0.0
        one-off 500 on 2024-01-05, range 2024-01-01..01-10  -> 500.0
        one-off 500 on 2023-12-20, same range               -> 0.0
    """
    start = _as_date(cost.start_date)
    end = _as_date(cost.end_date)
    amount = float(cost.amount or 0)

    if start is None:
        return 0.0

    if cost.recurring:
        if start > range_end:
            return 0.0
        if end is not None and end < range_start:
            return 0.0
        range_days = (range_end - range_start).days + 1
        return prorate(amount, range_days)

    if range_start <= start <= range_end:
        return amount
    return 0.0


def get_allocated_costs(costs: Iterable, range_start: date, range_end: date) -> float:
    """Sum of `calculate_allocated_amount` over `costs`."""
    return sum(calculate_allocated_amount(cost, range_start, range_end) for cost in costs)
