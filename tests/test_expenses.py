from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import User
from schemas import ExpenseIn
from services import (
    CategoryBudgetConfig,
    ExpenseForbidden,
    ExpenseNotFound,
    ExpenseService,
    ExpenseValidationError,
)

BUDGETS = CategoryBudgetConfig('{"Groceries": 300, "Transport": 100}')


def _users(session: Session) -> tuple[int, int]:
    alice = User(username="alice", password_hash="x")
    bob = User(username="bob", password_hash="x")
    session.add_all([alice, bob])
    session.commit()
    return alice.id, bob.id


def _payload(**overrides) -> dict[str, object]:
    data: dict[str, object] = {
        "date": date(2025, 1, 5),
        "amount_cents": 1230,
        "description": "Lunch",
        "category": "Groceries",
    }
    data.update(overrides)
    return data


def test_create_stores_amount_in_cents() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice_id, _ = _users(session)
        service = ExpenseService(session, BUDGETS)

        expense = service.create(alice_id, _payload(description="  Lunch  "))

        assert expense.id is not None
        stored = service.get_owned(alice_id, expense.id)
        assert stored.amount_cents == 1230
        assert stored.amount == 12.30
        assert stored.description == "Lunch"


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"amount_cents": 0}, "Amount must be positive."),
        ({"amount_cents": -100}, "Amount must be positive."),
        ({"amount_cents": 10**22}, "Amount is too large."),
        ({"description": "   "}, "Description cannot be empty."),
        ({"category": " "}, "Category cannot be empty."),
        ({"category": "Rent"}, "Unknown category."),
    ],
)
def test_create_rejects_invalid_input(overrides, message: str) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice_id, _ = _users(session)

        with pytest.raises(ExpenseValidationError, match=message):
            ExpenseService(session, BUDGETS).create(alice_id, _payload(**overrides))


def test_update_replaces_all_fields() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice_id, _ = _users(session)
        service = ExpenseService(session, BUDGETS)
        expense = service.create(alice_id, _payload())

        service.update(
            alice_id,
            expense.id,
            ExpenseIn(
                date=date(2025, 2, 1),
                amount_cents=999,
                description="Bus pass",
                category="Transport",
            ),
        )

        stored = service.get_owned(alice_id, expense.id)
        assert (stored.date, stored.amount_cents, stored.description) == (
            date(2025, 2, 1),
            999,
            "Bus pass",
        )
        assert stored.category == "Transport"


def test_other_users_expense_is_forbidden_not_missing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice_id, bob_id = _users(session)
        service = ExpenseService(session, BUDGETS)
        expense = service.create(alice_id, _payload())

        with pytest.raises(ExpenseForbidden):
            service.get_owned(bob_id, expense.id)
        with pytest.raises(ExpenseForbidden):
            service.update(bob_id, expense.id, _payload(amount_cents=1))
        with pytest.raises(ExpenseForbidden):
            service.delete(bob_id, expense.id)
        with pytest.raises(ExpenseNotFound):
            service.get_owned(alice_id, expense.id + 100)

        assert service.get_owned(alice_id, expense.id).amount_cents == 1230


def test_delete_removes_expense() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice_id, _ = _users(session)
        service = ExpenseService(session, BUDGETS)
        expense = service.create(alice_id, _payload())

        service.delete(alice_id, expense.id)

        with pytest.raises(ExpenseNotFound):
            service.get_owned(alice_id, expense.id)


def test_list_paginates_within_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice_id, bob_id = _users(session)
        service = ExpenseService(session, BUDGETS)
        for day in range(1, 6):
            service.create(alice_id, _payload(date=date(2025, 1, day)))
        service.create(alice_id, _payload(date=date(2025, 2, 1)))
        service.create(bob_id, _payload(date=date(2025, 1, 3)))

        first = service.list(alice_id, 2025, 1, page=1, page_size=2)
        assert first.total == 5
        assert first.pages == 3
        assert [e.date.day for e in first.expenses] == [5, 4]

        last = service.list(alice_id, 2025, 1, page=3, page_size=2)
        assert [e.date.day for e in last.expenses] == [1]

        clamped = service.list(alice_id, 2025, 1, page=0, page_size=0)
        assert (clamped.page, clamped.page_size) == (1, 1)
        assert service.list_years(alice_id) == [2025]
