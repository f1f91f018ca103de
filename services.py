from __future__ import annotations

import csv
import json
import logging
from collections import Counter
from typing import BinaryIO, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from csv_utils import (
    SkipReason,
    classify_row,
    normalize_header,
    stage_upload,
)
from models import Expense, User
from money import cents_to_major, format_money, to_cents
from periods import ExpenseCriteria
from repositories import ExpenseRepository, UserRepository
from schemas import (
    Alert,
    CategoryShare,
    ExpenseIn,
    ExpensePage,
    MonthlySummary,
)

logger = logging.getLogger(__name__)


class ExpenseValidationError(ValueError):
    pass


class ExpenseNotFound(LookupError):
    pass


class ExpenseForbidden(PermissionError):
    pass


class UsernameTaken(ValueError):
    pass


def validation_message(exc: ValidationError) -> str:
    """First human-readable message of a pydantic error."""
    error = exc.errors()[0]
    original = (error.get("ctx") or {}).get("error")
    if original is not None:
        return str(original)
    field = ".".join(str(part) for part in error.get("loc", ()))
    return f"{field}: {error['msg']}" if field else error["msg"]


def format_budget(budget: Union[int, float]) -> str:
    """Whole-number budgets print without a trailing ".0"."""
    if isinstance(budget, float) and budget.is_integer():
        return str(int(budget))
    return str(budget)


class CategoryBudgetConfig:
    """Category budget ceilings in major units, in configuration order.

    The keys double as the category allow-list for forms and CSV imports.
    """

    def __init__(self, json_budgets: str) -> None:
        try:
            decoded = json.loads(json_budgets)
        except (TypeError, json.JSONDecodeError) as exc:
            raise ValueError("Invalid category budgets JSON") from exc
        if not isinstance(decoded, dict):
            raise ValueError("Invalid category budgets JSON")
        for budget in decoded.values():
            if isinstance(budget, bool) or not isinstance(budget, (int, float)):
                raise ValueError("Invalid category budgets JSON")
        self._budgets: dict[str, Union[int, float]] = decoded

    def get_budgets(self) -> dict[str, Union[int, float]]:
        return dict(self._budgets)

    def get_budget_for_category(self, category: str) -> Optional[Union[int, float]]:
        return self._budgets.get(category)

    def categories(self) -> list[str]:
        return list(self._budgets)


class MonthlySummaryService:
    def __init__(self, session: Session) -> None:
        self.expenses = ExpenseRepository(session)

    @staticmethod
    def _share(cents: float, total_cents: int) -> CategoryShare:
        percentage = (cents / total_cents * 100) if total_cents else 0.0
        return CategoryShare(value=cents_to_major(cents), percentage=percentage)

    def compute_total_expenditure(self, user_id: int, year: int, month: int) -> float:
        criteria = ExpenseCriteria.for_month(user_id, year, month)
        return cents_to_major(self.expenses.sum_amounts(criteria))

    def compute_per_category_totals(
        self, user_id: int, year: int, month: int
    ) -> dict[str, CategoryShare]:
        criteria = ExpenseCriteria.for_month(user_id, year, month)
        totals_cents = self.expenses.sum_amounts_by_category(criteria)
        total_cents = sum(totals_cents.values())
        return {
            category: self._share(cents, total_cents)
            for category, cents in totals_cents.items()
        }

    def compute_per_category_averages(
        self, user_id: int, year: int, month: int
    ) -> dict[str, CategoryShare]:
        criteria = ExpenseCriteria.for_month(user_id, year, month)
        averages_cents = self.expenses.average_amounts_by_category(criteria)
        total_cents = self.expenses.sum_amounts(criteria)
        return {
            category: self._share(cents, total_cents)
            for category, cents in averages_cents.items()
        }

    def summarize(self, user_id: int, year: int, month: int) -> MonthlySummary:
        criteria = ExpenseCriteria.for_month(user_id, year, month)
        totals_cents = self.expenses.sum_amounts_by_category(criteria)
        averages_cents = self.expenses.average_amounts_by_category(criteria)
        total_cents = sum(totals_cents.values())
        return MonthlySummary(
            year=year,
            month=month,
            total=cents_to_major(total_cents),
            totals={
                category: self._share(cents, total_cents)
                for category, cents in totals_cents.items()
            },
            averages={
                category: self._share(cents, total_cents)
                for category, cents in averages_cents.items()
            },
        )


class AlertGenerator:
    def __init__(self, budgets: CategoryBudgetConfig, session: Session) -> None:
        self.budgets = budgets
        self.expenses = ExpenseRepository(session)

    def generate(self, user_id: int, year: int, month: int) -> list[Alert]:
        criteria = ExpenseCriteria.for_month(user_id, year, month)
        spent_by_category = self.expenses.sum_amounts_by_category(criteria)

        alerts: list[Alert] = []
        for category, budget in self.budgets.get_budgets().items():
            budget_cents = to_cents(budget)
            spent_cents = spent_by_category.get(category, 0)
            if spent_cents <= budget_cents:
                continue
            alerts.append(
                Alert(
                    category=category,
                    budget=budget,
                    spent=round(cents_to_major(spent_cents), 2),
                    message=(
                        f"Overspent on {category}: spent {format_money(spent_cents)}"
                        f", budget was {format_budget(budget)}"
                    ),
                )
            )
        return alerts


class ExpenseService:
    def __init__(self, session: Session, budgets: CategoryBudgetConfig) -> None:
        self.session = session
        self.budgets = budgets
        self.expenses = ExpenseRepository(session)

    def _validated(self, data: Union[ExpenseIn, dict]) -> ExpenseIn:
        if not isinstance(data, ExpenseIn):
            try:
                data = ExpenseIn(**data)
            except ValidationError as exc:
                raise ExpenseValidationError(validation_message(exc)) from exc
        if data.category not in self.budgets.categories():
            raise ExpenseValidationError("Unknown category.")
        return data

    def list(
        self, user_id: int, year: int, month: int, page: int, page_size: int
    ) -> ExpensePage:
        page = max(1, page)
        page_size = max(1, page_size)
        criteria = ExpenseCriteria.for_month(user_id, year, month)
        offset = (page - 1) * page_size
        return ExpensePage(
            expenses=self.expenses.find_by(criteria, offset, page_size),
            total=self.expenses.count_by(criteria),
            page=page,
            page_size=page_size,
        )

    def list_years(self, user_id: int) -> list[int]:
        return self.expenses.list_expenditure_years(user_id)

    def get_owned(self, user_id: int, expense_id: int) -> Expense:
        expense = self.expenses.find(expense_id)
        if expense is None:
            raise ExpenseNotFound("Expense not found")
        if expense.user_id != user_id:
            raise ExpenseForbidden("Not allowed")
        return expense

    def create(self, user_id: int, data: Union[ExpenseIn, dict]) -> Expense:
        data = self._validated(data)
        expense = Expense(
            user_id=user_id,
            date=data.date,
            category=data.category,
            amount_cents=data.amount_cents,
            description=data.description,
        )
        self.expenses.save(expense)
        self.session.commit()
        return expense

    def update(
        self, user_id: int, expense_id: int, data: Union[ExpenseIn, dict]
    ) -> Expense:
        expense = self.get_owned(user_id, expense_id)
        data = self._validated(data)
        expense.amount_cents = data.amount_cents
        expense.description = data.description
        expense.date = data.date
        expense.category = data.category
        self.expenses.save(expense)
        self.session.commit()
        return expense

    def delete(self, user_id: int, expense_id: int) -> None:
        self.get_owned(user_id, expense_id)
        self.expenses.delete(expense_id)
        self.session.commit()

    def import_from_csv(self, user_id: int, upload: BinaryIO) -> int:
        """Import the valid rows of an uploaded CSV file in one transaction.

        A bad header fails the whole import with ``CSVHeaderError``. Rows that
        do not validate are skipped and logged; only the count of imported
        rows is returned. Persistence errors roll back every row of the file.
        """
        categories = frozenset(self.budgets.categories())
        imported = 0
        skipped: Counter[SkipReason] = Counter()

        with stage_upload(upload) as path, path.open(
            "r", encoding="utf-8-sig", newline=""
        ) as handle:
            reader = csv.reader(handle)
            header = normalize_header(next(reader, None) or [])

            self.expenses.begin()
            try:
                for row in reader:
                    result = classify_row(header, row, categories)
                    if isinstance(result, SkipReason):
                        skipped[result] += 1
                        if result is not SkipReason.blank:
                            logger.info(
                                f"csv_import: user={user_id} line={reader.line_num} "
                                f"skipped reason={result.value}"
                            )
                        continue
                    self.expenses.save(
                        Expense(
                            user_id=user_id,
                            date=result.date,
                            category=result.category,
                            amount_cents=result.amount_cents,
                            description=result.description,
                        )
                    )
                    imported += 1
                self.expenses.commit()
            except Exception:
                logger.exception(
                    f"csv_import: user={user_id} rolled back after {imported} rows"
                )
                self.expenses.rollback()
                raise

        skipped.pop(SkipReason.blank, None)
        logger.info(
            f"csv_import: user={user_id} imported={imported} "
            f"skipped={sum(skipped.values())}"
        )
        return imported


class AuthService:
    def __init__(self, session: Session) -> None:
        self.users = UserRepository(session)

    def register(self, username: str, password: str) -> User:
        username = (username or "").strip()
        if not username or not (password or "").strip():
            raise ValueError("Username and password are required")
        if self.users.find_by_username(username) is not None:
            raise UsernameTaken(f"Username '{username}' is already taken.")
        user = User(
            username=username,
            password_hash=generate_password_hash(password),
        )
        self.users.save(user)
        logger.info(f"register: username={username} user_id={user.id}")
        return user

    def attempt(self, username: str, password: str) -> Optional[User]:
        user = self.users.find_by_username((username or "").strip())
        if user is None or not check_password_hash(user.password_hash, password or ""):
            logger.info(f"login_failed: username={username}")
            return None
        logger.info(f"login: user_id={user.id}")
        return user
