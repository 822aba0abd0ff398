"""Named dashboard periods resolved against a shop's local calendar.

WHAT:
    Maps keys like "yesterday" or "last30days" to an inclusive range of whole
    local calendar days, and derives the comparable previous period.

WHY:
    The server runs in UTC while merchants do not. "Local today" is found by
    projecting the current instant into the shop timezone and reading its
    Y/M/D; the range boundaries are then built from those fields as
    UTC-anchored naive datetimes, which is how the cost ledger keys its days.
    Computing the date on the server clock instead gives off-by-one days
    whenever the two calendars disagree.

REFERENCES:
    - shopprofit/services/report_service.py (current vs previous period)
    - shopprofit/services/cost_ledger.py (naive midnight day keys)
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_PERIOD = "last30days"
SUPPORTED_PERIODS = (
    "today",
    "yesterday",
    "last7days",
    "last30days",
    "last60days",
    "last90days",
    "thisMonth",
    "lastMonth",
)

_LAST_N_DAYS = re.compile(r"^last(\d+)days$")
# Longest "last<N>days" range; larger N falls back to the default period
MAX_PERIOD_DAYS = 3650


@dataclass(frozen=True)
class PeriodRange:
    """Inclusive range of local calendar days."""

    key: str
    start_date: date
    end_date: date

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    @property
    def start(self) -> datetime:
        """00:00:00 of the first day, UTC-anchored and naive."""
        return datetime.combine(self.start_date, time.min)

    @property
    def end(self) -> datetime:
        """23:59:59.999999 of the last day, UTC-anchored and naive."""
        return datetime.combine(self.end_date, time.max)

    def previous(self) -> "PeriodRange":
        """Same number of days immediately before this range."""
        end_date = self.start_date - timedelta(days=1)
        start_date = end_date - timedelta(days=self.days - 1)
        return PeriodRange(key=f"previous:{self.key}", start_date=start_date, end_date=end_date)

    def instants(self, tz_name: str) -> Tuple[datetime, datetime]:
        """Aware UTC instants bounding the range in the shop's wall clock.

        Used when querying systems that filter on real timestamps (orders)
        rather than on day keys.
        """
        tz = get_zone(tz_name)
        start = datetime.combine(self.start_date, time.min, tzinfo=tz)
        end = datetime.combine(self.end_date, time.max, tzinfo=tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    """Return the ZoneInfo for `tz_name`, falling back to UTC when unknown."""
    if not tz_name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("[PERIODS] Unknown timezone %r, falling back to UTC", tz_name)
        return ZoneInfo("UTC")


def is_valid_timezone(tz_name: str) -> bool:
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def local_today(tz_name: Optional[str], now: Optional[datetime] = None) -> date:
    """Calendar date in the shop timezone at instant `now` (default: now)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(get_zone(tz_name)).date()


def resolve_period(period_key: Optional[str], tz_name: Optional[str], now: Optional[datetime] = None) -> PeriodRange:
    """Resolve a named period into an inclusive local-day range.

    Args:
        period_key: One of SUPPORTED_PERIODS, or "last<N>days" with N up to
            MAX_PERIOD_DAYS. Anything else falls back to "last30days".
        tz_name: IANA timezone of the shop.
        now: Current instant (aware, or naive UTC). Injected by tests.

    Returns:
        PeriodRange whose `start`/`end` are naive datetimes anchored at the
        local day boundaries.
    """
    today = local_today(tz_name, now)
    key = period_key or DEFAULT_PERIOD

    if key == "today":
        return PeriodRange(key, today, today)

    if key == "yesterday":
        yesterday = today - timedelta(days=1)
        return PeriodRange(key, yesterday, yesterday)

    if key == "thisMonth":
        return PeriodRange(key, today.replace(day=1), today)

    if key == "lastMonth":
        last_day = today.replace(day=1) - timedelta(days=1)
        return PeriodRange(key, last_day.replace(day=1), last_day)

    match = _LAST_N_DAYS.match(key)
    if match and 0 < int(match.group(1)) <= MAX_PERIOD_DAYS:
        days = int(match.group(1))
        return PeriodRange(key, today - timedelta(days=days - 1), today)

    logger.debug("[PERIODS] Unknown period %r, using %s", key, DEFAULT_PERIOD)
    return resolve_period(DEFAULT_PERIOD, tz_name, now)
