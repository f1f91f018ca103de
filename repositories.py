from __future__ import annotations

from typing import Optional

from sqlalchemy import extract, func, select
from sqlalchemy.orm import Session

from models import Expense, User
from periods import ExpenseCriteria


class ExpenseRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _window(self, stmt, criteria: ExpenseCriteria):
        return stmt.where(
            Expense.user_id == criteria.user_id,
            Expense.date >= criteria.start,
            Expense.date < criteria.end,
        )

    def find(self, expense_id: int) -> Optional[Expense]:
        return self.session.get(Expense, expense_id)

    def save(self, expense: Expense) -> None:
        if expense.id is None:
            self.session.add(expense)
        # Flushing assigns the primary key on first save.
        self.session.flush()

    def delete(self, expense_id: int) -> None:
        expense = self.find(expense_id)
        if expense is not None:
            self.session.delete(expense)
            self.session.flush()

    def find_by(
        self, criteria: ExpenseCriteria, offset: int = 0, limit: int = 20
    ) -> list[Expense]:
        stmt = (
            self._window(select(Expense), criteria)
            .order_by(Expense.date.desc(), Expense.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def count_by(self, criteria: ExpenseCriteria) -> int:
        stmt = self._window(select(func.count(Expense.id)), criteria)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def list_expenditure_years(self, user_id: int) -> list[int]:
        year = extract("year", Expense.date).label("year")
        stmt = (
            select(year)
            .where(Expense.user_id == user_id)
            .group_by(year)
            .order_by(year.desc())
        )
        return [int(row.year) for row in self.session.execute(stmt)]

    def sum_amounts_by_category(self, criteria: ExpenseCriteria) -> dict[str, int]:
        stmt = self._window(
            select(
                Expense.category,
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
            ),
            criteria,
        ).group_by(Expense.category)
        return {
            row.category: int(row.total or 0) for row in self.session.execute(stmt)
        }

    def average_amounts_by_category(
        self, criteria: ExpenseCriteria
    ) -> dict[str, float]:
        stmt = self._window(
            select(
                Expense.category,
                func.avg(Expense.amount_cents).label("average"),
            ),
            criteria,
        ).group_by(Expense.category)
        return {
            row.category: float(row.average or 0) for row in self.session.execute(stmt)
        }

    def sum_amounts(self, criteria: ExpenseCriteria) -> int:
        stmt = self._window(
            select(func.coalesce(func.sum(Expense.amount_cents), 0)), criteria
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def begin(self) -> None:
        if not self.session.in_transaction():
            self.session.begin()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


class UserRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def find_by_username(self, username: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(User.username == username).limit(1)
        )

    def save(self, user: User) -> None:
        if user.id is not None:
            raise ValueError(f"User ID {user.id} already exists.")
        self.session.add(user)
        self.session.commit()
