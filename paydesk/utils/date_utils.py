"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the store keeps naive UTC)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(from_date: date, months: int, anchor_day: int | None = None) -> date:
    """
    Move a date by whole calendar months, landing on anchor_day.

    The anchor defaults to from_date's day and is clamped to the length of
    the target month (anchor 31 in April gives April 30).
    """
    day = anchor_day if anchor_day is not None else from_date.day
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day, days_in_month(year, month)))


def day_bounds(moment: datetime) -> Tuple[datetime, datetime]:
    """[start, end) of the calendar day containing moment"""
    start = datetime.combine(moment.date(), time.min)
    return start, start + timedelta(days=1)


def days_between(earlier: date, later: date) -> int:
    """Whole days from earlier to later, never negative"""
    return max((later - earlier).days, 0)
