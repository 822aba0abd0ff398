"""
Named Period Resolution Tests (Unit)
====================================

WHAT: Period keys resolve to inclusive local-day ranges in the shop timezone.
WHY: Using the server clock instead of the shop calendar shifts every report by a day
     around midnight.

REFERENCES:
- backend/shopprofit/utils/periods.py
"""

from datetime import date, datetime, timezone

from shopprofit.utils.periods import (
    MAX_PERIOD_DAYS,
    PeriodRange,
    get_zone,
    is_valid_timezone,
    local_today,
    resolve_period,
)

# 03:00 UTC is still the previous evening in UTC-5
NOW = datetime(2024, 3, 10, 3, 0, tzinfo=timezone.utc)


def test_yesterday_uses_shop_calendar_not_server_calendar() -> None:
    period = resolve_period("yesterday", "Etc/GMT+5", NOW)

    assert period.start_date == date(2024, 3, 8)
    assert period.end_date == date(2024, 3, 8)
    assert period.start == datetime(2024, 3, 8, 0, 0)
    assert period.end.date() == date(2024, 3, 8)
    assert period.end.hour == 23 and period.end.minute == 59


def test_today_in_utc() -> None:
    period = resolve_period("today", "UTC", NOW)
    assert period.start_date == period.end_date == date(2024, 3, 10)
    assert period.days == 1


def test_last_n_days_includes_today() -> None:
    period = resolve_period("last7days", "UTC", NOW)

    assert period.start_date == date(2024, 3, 4)
    assert period.end_date == date(2024, 3, 10)
    assert period.days == 7


def test_arbitrary_last_n_days() -> None:
    period = resolve_period("last14days", "UTC", NOW)
    assert period.days == 14


def test_this_month_and_last_month() -> None:
    now = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

    this_month = resolve_period("thisMonth", "UTC", now)
    assert (this_month.start_date, this_month.end_date) == (date(2024, 3, 1), date(2024, 3, 15))

    last_month = resolve_period("lastMonth", "UTC", now)
    assert (last_month.start_date, last_month.end_date) == (date(2024, 2, 1), date(2024, 2, 29))


def test_unknown_key_falls_back_to_last_30_days() -> None:
    period = resolve_period("fortnight", "UTC", NOW)
    assert period.key == "last30days"
    assert period.days == 30

    assert resolve_period(None, "UTC", NOW).key == "last30days"
    assert resolve_period("last0days", "UTC", NOW).key == "last30days"


def test_oversized_last_n_days_falls_back_to_last_30_days() -> None:
    longest = resolve_period(f"last{MAX_PERIOD_DAYS}days", "UTC", NOW)
    assert longest.days == MAX_PERIOD_DAYS
    assert longest.previous().days == MAX_PERIOD_DAYS

    period = resolve_period("last1000000days", "UTC", NOW)
    assert period.key == "last30days"
    assert period.days == 30


def test_previous_period_has_same_length_and_ends_before_start() -> None:
    period = resolve_period("last7days", "UTC", NOW)
    previous = period.previous()

    assert previous.days == 7
    assert previous.end_date == date(2024, 3, 3)
    assert previous.start_date == date(2024, 2, 26)
    assert previous.key == "previous:last7days"


def test_instants_are_local_day_bounds_in_utc() -> None:
    period = PeriodRange("yesterday", date(2024, 3, 8), date(2024, 3, 8))

    start, end = period.instants("Etc/GMT+5")

    assert start == datetime(2024, 3, 8, 5, 0, tzinfo=timezone.utc)
    assert end.date() == date(2024, 3, 9)
    assert (end.hour, end.minute) == (4, 59)


def test_unknown_timezone_falls_back_to_utc() -> None:
    assert str(get_zone("Mars/Olympus_Mons")) == "UTC"
    assert local_today("Mars/Olympus_Mons", NOW) == date(2024, 3, 10)
    assert is_valid_timezone("Europe/Amsterdam")
    assert not is_valid_timezone("Mars/Olympus_Mons")


def test_naive_now_is_treated_as_utc() -> None:
    assert local_today("Etc/GMT+5", datetime(2024, 3, 10, 3, 0)) == date(2024, 3, 9)
