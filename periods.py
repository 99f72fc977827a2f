from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    first = date(year, month, 1)
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return Period(f"{year:04d}-{month:02d}", first, next_month - date.resolution)


def resolve_period(month: Optional[int], year: Optional[int]) -> Optional[Period]:
    """Month period for a month/year query pair; None when both are absent."""
    if month is None and year is None:
        return None
    if month is None or year is None:
        raise ValueError("Month and year must be given together")
    return month_period(year, month)
