"""Candidate expiry dates for the daily, weekly and monthly hedge horizons.

All functions are pure: the only notion of "now" is the reference instant the
caller passes in. Dates are returned as venue expiry tokens (``5JAN24``,
``27DEC24``) because they are used directly as lookup keys against the live
instrument list.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

from hedgebot.utils.constants import EXPIRY_WEEKDAY, MONTH_ABBR

DEFAULT_CUTOFF_HOUR = 9


@dataclass(frozen=True)
class Horizons:
    daily: list[str] = field(default_factory=list)
    weekly: list[str] = field(default_factory=list)
    monthly: list[str] = field(default_factory=list)


def format_expiry(day: date) -> str:
    """Venue expiry token: day (no padding) + month abbreviation + 2-digit year."""
    return f"{day.day}{MONTH_ABBR[day.month - 1]}{day.year % 100:02d}"


def last_weekday_of_month(year: int, month: int, weekday: int = EXPIRY_WEEKDAY) -> date:
    last = date(year, month, calendar.monthrange(year, month)[1])
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def horizon_start(local_now: datetime, cutoff_hour: int = DEFAULT_CUTOFF_HOUR) -> date:
    """Today, or tomorrow once the local cutoff hour has been reached."""
    today = local_now.date()
    if local_now.hour >= cutoff_hour:
        return today + timedelta(days=1)
    return today


def schedule_horizons(
    reference_instant: datetime,
    reference_timezone: str | tzinfo = "Europe/London",
    cutoff_hour: int = DEFAULT_CUTOFF_HOUR,
    daily_days: int = 3,
    weekly_count: int = 4,
    monthly_months: int = 3,
    weekday: int = EXPIRY_WEEKDAY,
) -> Horizons:
    """Build the three horizon buckets for ``reference_instant``.

    - daily: ``daily_days`` consecutive dates from the cutoff-adjusted start.
    - weekly: the next ``weekly_count`` ``weekday`` dates on or after the start,
      skipping dates already in daily.
    - monthly: the last ``weekday`` of each of ``monthly_months`` months,
      starting with the current one. Not deduplicated against daily/weekly.
    """
    if reference_instant.tzinfo is None:
        raise ValueError("reference_instant must be timezone-aware")

    tz = ZoneInfo(reference_timezone) if isinstance(reference_timezone, str) else reference_timezone
    local_now = reference_instant.astimezone(tz)
    start = horizon_start(local_now, cutoff_hour)

    daily_dates = [start + timedelta(days=i) for i in range(daily_days)]

    weekly_dates: list[date] = []
    cursor = start + timedelta(days=(weekday - start.weekday()) % 7)
    while len(weekly_dates) < weekly_count:
        if cursor not in daily_dates:
            weekly_dates.append(cursor)
        cursor += timedelta(days=7)

    monthly_dates = []
    for offset in range(monthly_months):
        year, month = _shift_month(local_now.year, local_now.month, offset)
        monthly_dates.append(last_weekday_of_month(year, month, weekday))

    return Horizons(
        daily=[format_expiry(d) for d in daily_dates],
        weekly=[format_expiry(d) for d in weekly_dates],
        monthly=[format_expiry(d) for d in monthly_dates],
    )
