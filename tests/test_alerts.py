from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Expense, User
from services import AlertGenerator, CategoryBudgetConfig


def _spend(session: Session, user_id: int, category: str, cents: int) -> None:
    session.add(
        Expense(
            user_id=user_id,
            date=date(2025, 5, 12),
            category=category,
            amount_cents=cents,
            description="test",
        )
    )
    session.commit()


def _user(session: Session) -> int:
    user = User(username="alice", password_hash="x")
    session.add(user)
    session.commit()
    return user.id


def test_no_alert_when_spend_equals_budget() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        _spend(session, user_id, "Groceries", 10_000)
        budgets = CategoryBudgetConfig('{"Groceries": 100.00}')

        assert AlertGenerator(budgets, session).generate(user_id, 2025, 5) == []

        _spend(session, user_id, "Groceries", 1)
        alerts = AlertGenerator(budgets, session).generate(user_id, 2025, 5)
        assert [a.category for a in alerts] == ["Groceries"]
        assert alerts[0].spent == 100.01


def test_alerts_follow_budget_configuration_order() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        _spend(session, user_id, "groceries", 10_500)
        _spend(session, user_id, "entertainment", 6_000)
        _spend(session, user_id, "transport", 2_000)
        budgets = CategoryBudgetConfig(
            '{"groceries": 100, "utilities": 80, "entertainment": 50}'
        )

        alerts = AlertGenerator(budgets, session).generate(user_id, 2025, 5)

        assert [a.category for a in alerts] == ["groceries", "entertainment"]
        assert alerts[0].budget == 100
        assert alerts[0].spent == 105.00
        assert alerts[0].message == (
            "Overspent on groceries: spent 105.00, budget was 100"
        )
        assert alerts[1].budget == 50
        assert alerts[1].spent == 60.00


def test_alert_message_formats_large_amounts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        _spend(session, user_id, "Rent", 123_456)
        budgets = CategoryBudgetConfig('{"Rent": 1000.5}')

        alerts = AlertGenerator(budgets, session).generate(user_id, 2025, 5)

        assert alerts[0].message == (
            "Overspent on Rent: spent 1,234.56, budget was 1000.5"
        )


def test_no_alerts_for_other_months() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        _spend(session, user_id, "Groceries", 50_000)
        budgets = CategoryBudgetConfig('{"Groceries": 100}')

        assert AlertGenerator(budgets, session).generate(user_id, 2025, 6) == []


def test_alert_message_drops_trailing_zero_from_whole_budget() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        _spend(session, user_id, "Groceries", 12_000)
        budgets = CategoryBudgetConfig('{"Groceries": 100.00}')

        alerts = AlertGenerator(budgets, session).generate(user_id, 2025, 5)

        assert alerts[0].message == (
            "Overspent on Groceries: spent 120.00, budget was 100"
        )
