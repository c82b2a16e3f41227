"""Calendar-month helpers shared by the aggregation queries."""

import calendar
from datetime import date, datetime
from typing import Union


def month_key(value: Union[date, datetime]) -> str:
    """Format a date as its YYYY-MM bucket."""
    return f"{value.year:04d}-{value.month:02d}"


def shift_months(value: date, months: int) -> date:
    """
    Move a date by a number of calendar months.

    The day is clamped to the last day of the target month,
    so March 31 minus one month is February 28/29.
    """
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)

