"""
Date ranges for the period names tools accept.

Every function takes an explicit `today` so results are reproducible.
Weeks start on Monday.
"""

import calendar
from datetime import date, timedelta
from typing import Optional


DateRange = tuple[Optional[date], Optional[date]]


def add_months(d: date, months: int) -> date:
    """Same day `months` later (or earlier), clamped to the month's length."""
    month_index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def first_of_month(d: date) -> date:
    return d.replace(day=1)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_key(d: date) -> str:
    """YYYY-MM."""
    return f"{d.year:04d}-{d.month:02d}"


def parse_month(month: str) -> tuple[int, int]:
    """'2026-03' -> (2026, 3). Raises ValueError on anything else."""
    year_str, month_str = month.split("-")
    year, month_num = int(year_str), int(month_str)
    if not 1 <= month_num <= 12:
        raise ValueError(f"Invalid month: {month}")
    return year, month_num


def month_bounds(month: str) -> tuple[date, date]:
    """First and last day of a YYYY-MM month."""
    year, month_num = parse_month(month)
    return date(year, month_num, 1), date(year, month_num, days_in_month(year, month_num))


def week_start(d: date) -> date:
    """Monday of the week containing `d`."""
    return d - timedelta(days=d.weekday())


def period_range(period: str, today: date) -> DateRange:
    """
    Inclusive (start, end) for a period name.

    current_month   1st of this month .. today
    last_month      the whole previous month
    last_3_months   1st of the month 3 months ago .. today
    last_6_months   1st of the month 6 months ago .. today
    current_week    Monday .. today
    last_week       previous Monday .. previous Sunday
    all             no bounds
    """
    if period == "all":
        return None, None
    if period == "last_month":
        end = first_of_month(today) - timedelta(days=1)
        return first_of_month(end), end
    if period == "last_3_months":
        return first_of_month(add_months(today, -3)), today
    if period == "last_6_months":
        return first_of_month(add_months(today, -6)), today
    if period == "current_week":
        return week_start(today), today
    if period == "last_week":
        end = week_start(today) - timedelta(days=1)
        return end - timedelta(days=6), end
    return first_of_month(today), today


def anomaly_period_range(period: str, today: date) -> tuple[date, date]:
    """
    Ranges for anomaly detection, which looks back in days.

    last_3_days  today-3 .. today
    last_week    today-7 .. today
    otherwise    current month
    """
    if period == "last_3_days":
        return today - timedelta(days=3), today
    if period == "last_week":
        return today - timedelta(days=7), today
    return first_of_month(today), today


def trend_period_start(period: str, today: date) -> date:
    """Start date for trend windows: same day N months (or a year) ago."""
    if period == "last_6_months":
        return add_months(today, -6)
    if period == "last_year":
        return add_months(today, -12)
    return add_months(today, -3)
