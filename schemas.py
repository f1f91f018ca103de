from dataclasses import dataclass
from datetime import date

from pydantic import BaseModel, Field, field_validator

from models import Expense
from money import MAX_CENTS


class ExpenseIn(BaseModel):
    date: date
    amount_cents: int
    description: str = Field(..., max_length=500)
    category: str = Field(..., max_length=100)

    @field_validator("amount_cents")
    @classmethod
    def amount_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Amount must be positive.")
        if value > MAX_CENTS:
            raise ValueError("Amount is too large.")
        return value

    @field_validator("description")
    @classmethod
    def description_present(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Description cannot be empty.")
        return value.strip()

    @field_validator("category")
    @classmethod
    def category_present(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Category cannot be empty.")
        return value.strip()


class CSVRow(BaseModel):
    date: date
    amount_cents: int
    description: str
    category: str


@dataclass(frozen=True)
class CategoryShare:
    value: float
    percentage: float


@dataclass(frozen=True)
class MonthlySummary:
    year: int
    month: int
    total: float
    totals: dict[str, CategoryShare]
    averages: dict[str, CategoryShare]


@dataclass(frozen=True)
class Alert:
    category: str
    budget: float
    spent: float
    message: str


@dataclass(frozen=True)
class ExpensePage:
    expenses: list[Expense]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return max(1, -(-self.total // self.page_size))
