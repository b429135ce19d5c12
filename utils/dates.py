"""Calendar helpers for month-based aggregation."""
import re
from datetime import date, datetime, timezone
from typing import Tuple

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def is_valid_month(month: str) -> bool:
    """True for a well-formed `YYYY-MM` string with a real month number."""
    return bool(month) and MONTH_PATTERN.match(month) is not None


def month_range(month: str) -> Tuple[date, date]:
    """
    Returns the half-open range [first day of month, first day of next month).

    The end bound is built from the calendar, so December rolls over into
    January of the following year.
    """
    if not is_valid_month(month):
        raise ValueError(f"Invalid month format: {month!r}. Use YYYY-MM.")
    year, month_number = (int(part) for part in month.split("-"))
    start = date(year, month_number, 1)
    if month_number == 12:
        end = date(year + 1, 1, 1)
    else:
        end = date(year, month_number + 1, 1)
    return start, end


def month_of(day: date) -> str:
    return day.strftime("%Y-%m")


def utc_now() -> datetime:
    # MongoDB keeps millisecond precision; truncate so stored and returned values agree
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)
