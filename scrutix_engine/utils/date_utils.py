"""Date manipulation utilities"""

import calendar
from datetime import date, timedelta
from typing import List, Tuple


def generate_date_range(start: date, end: date) -> List[date]:
    """Generate list of dates from start to end (inclusive)"""
    days = (end - start).days + 1
    return [start + timedelta(days=i) for i in range(days)]


def business_days_between(start: date, end: date) -> int:
    """
    Signed count of weekdays from start (exclusive) to end (inclusive).

    Negative when end precedes start. Holidays are not accounted for.
    """
    if end == start:
        return 0
    step = 1 if end > start else -1
    count = 0
    current = start
    while current != end:
        if step > 0:
            current += timedelta(days=1)
            if current.weekday() < 5:
                count += 1
        else:
            if current.weekday() < 5:
                count -= 1
            current -= timedelta(days=1)
    return count


def month_bounds(day: date) -> Tuple[date, date]:
    """First and last day of the month containing day"""
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def previous_month_bounds(day: date) -> Tuple[date, date]:
    first_of_month = day.replace(day=1)
    return month_bounds(first_of_month - timedelta(days=1))


def is_month_end(day: date, margin_days: int = 2) -> bool:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.day >= last - margin_days


def days_30_360(start: date, end: date) -> int:
    """Day count between two dates under the 30/360 convention"""
    d1 = min(start.day, 30)
    d2 = min(end.day, 30) if d1 == 30 else end.day
    return (end.year - start.year) * 360 + (end.month - start.month) * 30 + (d2 - d1)
