from __future__ import annotations

from calendar import monthrange
from datetime import date, timedelta

SATURDAY = 5
SUNDAY = 6
MAX_WEEKEND_SHIFT_DAYS = 2


def add_months(start_date: date, months: int, anchor_day: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    return clamp_to_month(year, month, anchor_day)


def clamp_to_month(year: int, month: int, day: int) -> date:
    last_day = monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def months_between(start_date: date, end_date: date) -> int:
    return (end_date.year - start_date.year) * 12 + (end_date.month - start_date.month)


def is_weekend(value: date) -> bool:
    return value.weekday() in (SATURDAY, SUNDAY)


def adjust_for_weekend(value: date, adjustment: str) -> date:
    """Move a Saturday/Sunday date to the adjacent weekday.

    ``before`` moves back to Friday, ``after`` forward to Monday and ``on``
    leaves the date untouched.
    """
    if adjustment == "on" or not is_weekend(value):
        return value
    if adjustment == "before":
        return value - timedelta(days=value.weekday() - 4)
    if adjustment == "after":
        return value + timedelta(days=7 - value.weekday())
    raise ValueError(f"Unsupported weekend adjustment: {adjustment}")


def iter_days(start_date: date, end_date: date):
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)
