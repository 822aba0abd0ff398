"""
Money Math Helper Tests (Unit)
==============================

WHAT: safe_margin, trend and prorate edge cases.
WHY: Every dashboard percentage goes through these; NaN or inf must never reach a response.

REFERENCES:
- backend/shopprofit/utils/calculations.py
"""

import math

from shopprofit.utils.calculations import prorate, safe_margin, trend


def test_safe_margin_regular_division() -> None:
    assert safe_margin(720, 1000) == 72.0


def test_safe_margin_zero_or_non_finite_denominator_is_zero() -> None:
    assert safe_margin(50, 0) == 0.0
    assert safe_margin(50, math.inf) == 0.0
    assert safe_margin(50, math.nan) == 0.0


def test_trend_percent_change() -> None:
    assert trend(120, 100) == 20.0
    assert trend(80, 100) == -20.0


def test_trend_from_zero_reports_no_change() -> None:
    assert trend(500, 0) == 0.0


def test_prorate_uses_thirty_day_basis() -> None:
    assert prorate(300, 10) == 100.0
    assert prorate(300, 45) == 450.0


def test_prorate_empty_range() -> None:
    assert prorate(300, 0) == 0.0
    assert prorate(300, 10, period_basis_days=0) == 0.0
