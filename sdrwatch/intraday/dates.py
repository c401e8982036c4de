"""Business-day helpers for cumulative report fetching.

Only the major US market holidays are recognised; observed-date shifts
(e.g. a holiday falling on a Saturday) are not modelled.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo


def is_holiday(day: date) -> bool:
    """Return True if ``day`` is one of the major US holidays."""
    month, dom, weekday = day.month, day.day, day.weekday()

    if month == 1 and dom == 1:
        return True  # New Year's Day
    if month == 1 and weekday == 0 and 15 <= dom <= 21:
        return True  # Martin Luther King Jr. Day
    if month == 2 and weekday == 0 and 15 <= dom <= 21:
        return True  # Presidents' Day
    if month == 5 and weekday == 0 and dom >= 25:
        return True  # Memorial Day
    if month == 7 and dom == 4:
        return True  # Independence Day
    if month == 9 and weekday == 0 and dom <= 7:
        return True  # Labor Day
    if month == 11 and weekday == 3 and 22 <= dom <= 28:
        return True  # Thanksgiving
    if month == 12 and dom == 25:
        return True  # Christmas
    return False


def is_business_day(day: date) -> bool:
    return day.weekday() < 5 and not is_holiday(day)


def business_dates(start: date, end: date) -> list[date]:
    """Return every business day in ``[start, end]``, ascending."""
    days: list[date] = []
    current = start
    while current <= end:
        if is_business_day(current):
            days.append(current)
        current += timedelta(days=1)
    return days


def feed_today(timezone: str) -> date:
    """Return the current calendar date in the feed's publication timezone."""
    return datetime.now(ZoneInfo(timezone)).date()
