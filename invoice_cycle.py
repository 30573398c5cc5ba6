import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from errors import ValidationError

MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _shift(year: int, month: int, months: int) -> tuple[int, int]:
    total_months = month - 1 + months
    return year + total_months // 12, total_months % 12 + 1


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Move ``base`` by whole calendar months, snapping the day to month end."""
    year, month = _shift(base.year, base.month, months)
    day = desired_day if desired_day is not None else base.day
    return date(year, month, min(day, days_in_month(year, month)))


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    match = MONTH_KEY_RE.match((key or "").strip())
    if not match:
        raise ValidationError(f"Invalid period '{key}', expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid period '{key}', month out of range")
    return year, month


def shift_month_key(key: str, months: int) -> str:
    year, month = _shift(*parse_month_key(key), months)
    return f"{year:04d}-{month:02d}"


def clamp_day(key: str, day: int) -> date:
    year, month = parse_month_key(key)
    return date(year, month, min(max(day, 1), days_in_month(year, month)))


def month_bounds(key: str) -> Period:
    year, month = parse_month_key(key)
    return Period(key, date(year, month, 1), date(year, month, days_in_month(year, month)))


def current_month_key(today: Optional[date] = None) -> str:
    return month_key(today or date.today())


def month_window(reference: str, before: int = 6, after: int = 6) -> list[str]:
    parse_month_key(reference)
    return [shift_month_key(reference, offset) for offset in range(-before, after + 1)]


def invoice_period(purchase_date: date, closing_day: int) -> str:
    """Return the ``YYYY-MM`` invoice a card purchase is billed under.

    Purchases made after the closing day roll into the next month's invoice.
    A closing day past the end of the purchase month acts as the month's last
    day, so day 31 in February closes on the 28th (or 29th).
    """
    if not 1 <= closing_day <= 31:
        raise ValidationError("Closing day must be between 1 and 31")
    effective = min(closing_day, days_in_month(purchase_date.year, purchase_date.month))
    if purchase_date.day > effective:
        return month_key(add_months(purchase_date, 1, desired_day=1))
    return month_key(purchase_date)
