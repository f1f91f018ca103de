from dataclasses import dataclass
from datetime import date
from typing import Optional


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def next_month_start(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1)
    return date(year, month + 1, 1)


@dataclass(frozen=True)
class ExpenseCriteria:
    """Expenses of one user dated within ``[start, end)``."""

    user_id: int
    start: date
    end: date

    @classmethod
    def for_month(cls, user_id: int, year: int, month: int) -> "ExpenseCriteria":
        return cls(user_id, month_start(year, month), next_month_start(year, month))


def resolve_month(
    year: Optional[str],
    month: Optional[str],
    *,
    today: Optional[date] = None,
) -> tuple[int, int]:
    today = today or date.today()
    year_value = int(year) if year else today.year
    month_value = int(month) if month else today.month
    if not 1 <= year_value < 9999:
        raise ValueError("Year must be between 1 and 9998")
    if not 1 <= month_value <= 12:
        raise ValueError("Month must be between 1 and 12")
    return year_value, month_value
