from dataclasses import dataclass
from datetime import date
from typing import Optional

from recurrence import month_bounds


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def month_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    start, end = month_bounds(year, month)
    return Period(f"{year:04d}-{month:02d}", start, end)


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + delta
    return total // 12, total % 12 + 1


def trailing_months(count: int, *, today: Optional[date] = None) -> list[Period]:
    """The ``count`` months ending with the current one, oldest first."""
    if count < 1:
        raise ValueError("Month count must be positive")
    today = today or date.today()
    periods: list[Period] = []
    for offset in range(count - 1, -1, -1):
        year, month = shift_month(today.year, today.month, -offset)
        periods.append(month_period(year, month))
    return periods


def resolve_range(start: Optional[str], end: Optional[str]) -> Optional[Period]:
    if not start and not end:
        return None
    start_date = date.fromisoformat(start) if start else date.min
    end_date = date.fromisoformat(end) if end else date.max
    if start_date > end_date:
        raise ValueError("Start date must be before end date")
    return Period("custom", start_date, end_date)
