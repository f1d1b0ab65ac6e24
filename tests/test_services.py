from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import Base, build_engine
from models import Expense, ExpenseCategory, Goal, GoalStatus
from periods import Period
from schemas import (
    AddFundsIn,
    ExpenseIn,
    ExpenseUpdate,
    GoalIn,
    GoalUpdate,
    PasswordChangeIn,
    ProfileIn,
    RegisterIn,
)
from services import (
    DuplicateUsername,
    ExpenseFilters,
    ExpenseService,
    GoalService,
    InvalidCredentials,
    RecordForbidden,
    RecordNotFound,
    UserService,
)


def _engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    return engine


def _register(session: Session, username: str):
    return UserService(session).register(
        RegisterIn(username=username, password="password")
    )


def _add_expense(
    session: Session,
    user_id: int,
    amount: str,
    category: ExpenseCategory,
    on: date,
    **extra,
) -> Expense:
    return ExpenseService(session, user_id).create(
        ExpenseIn(amount=Decimal(amount), category=category, date=on, **extra)
    )


def test_register_and_authenticate() -> None:
    engine = _engine()
    with Session(engine) as session:
        users = UserService(session)
        user = users.register(
            RegisterIn(username="alice", password="hunter22", email="a@example.com")
        )

        assert user.password_hash != "hunter22"
        assert users.authenticate("ALICE", "hunter22").id == user.id
        with pytest.raises(InvalidCredentials):
            users.authenticate("alice", "wrong")
        with pytest.raises(InvalidCredentials):
            users.authenticate("nobody", "hunter22")
        with pytest.raises(DuplicateUsername):
            users.register(RegisterIn(username="Alice", password="x"))


def test_update_profile_applies_only_given_fields() -> None:
    engine = _engine()
    with Session(engine) as session:
        users = UserService(session)
        alice = users.register(
            RegisterIn(username="alice", password="pw", first_name="Alice")
        )
        _register(session, "bob")

        updated = users.update_profile(alice.id, ProfileIn(last_name="Liddell"))
        assert updated.first_name == "Alice"
        assert updated.last_name == "Liddell"

        with pytest.raises(DuplicateUsername):
            users.update_profile(alice.id, ProfileIn(username="bob"))


def test_change_password_requires_current_password() -> None:
    engine = _engine()
    with Session(engine) as session:
        users = UserService(session)
        user = _register(session, "alice")

        with pytest.raises(InvalidCredentials):
            users.change_password(
                user.id,
                PasswordChangeIn(
                    current_password="nope",
                    new_password="brand-new",
                    confirm_password="brand-new",
                ),
            )

        users.change_password(
            user.id,
            PasswordChangeIn(
                current_password="password",
                new_password="brand-new",
                confirm_password="brand-new",
            ),
        )
        assert users.authenticate("alice", "brand-new").id == user.id


def test_ensure_demo_user_is_idempotent() -> None:
    engine = _engine()
    with Session(engine) as session:
        users = UserService(session)
        first = users.ensure_demo_user()
        second = users.ensure_demo_user()

        assert first.id == second.id
        assert users.authenticate("testuser", "password").id == first.id


def test_expense_amount_is_stored_exactly() -> None:
    engine = _engine()
    with Session(engine) as session:
        user = _register(session, "alice")
        expense = _add_expense(
            session, user.id, "0.10", ExpenseCategory.food, date(2025, 3, 1)
        )
        expense_id = expense.id

    with Session(engine) as session:
        stored = session.get(Expense, expense_id)
        assert stored.amount == Decimal("0.10")
        assert isinstance(stored.amount, Decimal)


def test_expense_list_filters_and_sorts() -> None:
    engine = _engine()
    with Session(engine) as session:
        user = _register(session, "alice")
        other = _register(session, "bob")
        _add_expense(
            session,
            user.id,
            "9.50",
            ExpenseCategory.food,
            date(2025, 3, 2),
            description="Groceries",
        )
        _add_expense(
            session,
            user.id,
            "120",
            ExpenseCategory.bills,
            date(2025, 2, 20),
            note="Electricity",
        )
        _add_expense(
            session,
            user.id,
            "30",
            ExpenseCategory.transport,
            date(2025, 3, 10),
            description="Train ticket",
        )
        _add_expense(session, other.id, "999", ExpenseCategory.food, date(2025, 3, 3))

        service = ExpenseService(session, user.id)

        newest = service.list()
        assert [e.amount for e in newest] == [
            Decimal("30"),
            Decimal("9.50"),
            Decimal("120"),
        ]
        assert [e.amount for e in service.list(ExpenseFilters(sort="oldest"))] == [
            Decimal("120"),
            Decimal("9.50"),
            Decimal("30"),
        ]
        assert [
            e.amount for e in service.list(ExpenseFilters(sort="amount_high"))
        ] == [Decimal("120"), Decimal("30"), Decimal("9.50")]

        march = Period("month", date(2025, 3, 1), date(2025, 3, 31))
        assert len(service.list(ExpenseFilters(period=march))) == 2

        by_food = service.list(ExpenseFilters(category=ExpenseCategory.food))
        assert [e.description for e in by_food] == ["Groceries"]

        assert [e.note for e in service.list(ExpenseFilters(query="electric"))] == [
            "Electricity"
        ]
        assert [
            e.category for e in service.list(ExpenseFilters(query="transp"))
        ] == [ExpenseCategory.transport]


def test_expenses_by_category_and_date_range() -> None:
    engine = _engine()
    with Session(engine) as session:
        user = _register(session, "alice")
        _add_expense(session, user.id, "10", ExpenseCategory.food, date(2025, 3, 1))
        _add_expense(session, user.id, "20", ExpenseCategory.food, date(2025, 3, 31))
        _add_expense(session, user.id, "30", ExpenseCategory.health, date(2025, 4, 1))
        service = ExpenseService(session, user.id)

        assert len(service.by_category(ExpenseCategory.food)) == 2
        assert service.by_category(ExpenseCategory.shopping) == []

        in_march = service.by_date_range(date(2025, 3, 1), date(2025, 3, 31))
        assert sorted(e.amount for e in in_march) == [Decimal("10"), Decimal("20")]

        single_day = service.by_date_range(date(2025, 4, 1), date(2025, 4, 1))
        assert [e.amount for e in single_day] == [Decimal("30")]

        with pytest.raises(ValueError, match="Start date must be before end date"):
            service.by_date_range(date(2025, 4, 2), date(2025, 4, 1))


def test_recent_returns_latest_five() -> None:
    engine = _engine()
    with Session(engine) as session:
        user = _register(session, "alice")
        for day in range(1, 8):
            _add_expense(
                session, user.id, str(day), ExpenseCategory.other, date(2025, 3, day)
            )

        recent = ExpenseService(session, user.id).recent()

        assert [e.date.day for e in recent] == [7, 6, 5, 4, 3]


def test_partial_expense_update_keeps_other_fields() -> None:
    engine = _engine()
    with Session(engine) as session:
        user = _register(session, "alice")
        expense = _add_expense(
            session,
            user.id,
            "15",
            ExpenseCategory.shopping,
            date(2025, 3, 5),
            description="Shoes",
        )
        service = ExpenseService(session, user.id)

        updated = service.update(expense.id, ExpenseUpdate(amount=Decimal("17.25")))

        assert updated.amount == Decimal("17.25")
        assert updated.description == "Shoes"
        assert updated.category == ExpenseCategory.shopping


def test_foreign_expense_is_forbidden_and_left_untouched() -> None:
    engine = _engine()
    with Session(engine) as session:
        owner = _register(session, "alice")
        intruder = _register(session, "mallory")
        expense = _add_expense(
            session, owner.id, "40", ExpenseCategory.food, date(2025, 3, 5)
        )
        service = ExpenseService(
            session, intruder.id, conceal_foreign_records=False
        )

        with pytest.raises(RecordForbidden):
            service.get(expense.id)
        with pytest.raises(RecordForbidden):
            service.update(expense.id, ExpenseUpdate(amount=Decimal("1")))
        with pytest.raises(RecordForbidden):
            service.delete(expense.id)

        session.expire_all()
        stored = session.get(Expense, expense.id)
        assert stored is not None
        assert stored.amount == Decimal("40")


def test_concealed_foreign_expense_looks_missing() -> None:
    engine = _engine()
    with Session(engine) as session:
        owner = _register(session, "alice")
        intruder = _register(session, "mallory")
        expense = _add_expense(
            session, owner.id, "40", ExpenseCategory.food, date(2025, 3, 5)
        )
        service = ExpenseService(session, intruder.id, conceal_foreign_records=True)

        with pytest.raises(RecordNotFound, match="Expense not found"):
            service.get(expense.id)


def test_missing_expense_raises_not_found() -> None:
    engine = _engine()
    with Session(engine) as session:
        user = _register(session, "alice")

        with pytest.raises(RecordNotFound):
            ExpenseService(session, user.id).delete(12345)


def test_delete_expense_removes_row() -> None:
    engine = _engine()
    with Session(engine) as session:
        user = _register(session, "alice")
        expense = _add_expense(
            session, user.id, "5", ExpenseCategory.other, date(2025, 3, 5)
        )
        service = ExpenseService(session, user.id)

        service.delete(expense.id)

        assert service.list() == []


def test_goal_create_and_partial_update() -> None:
    engine = _engine()
    with Session(engine) as session:
        user = _register(session, "alice")
        service = GoalService(session, user.id)
        goal = service.create(
            GoalIn(name="  Emergency fund ", target_amount=Decimal("1000"))
        )

        assert goal.name == "Emergency fund"
        assert goal.current_amount == Decimal("0")
        assert goal.status == GoalStatus.in_progress

        updated = service.update(goal.id, GoalUpdate(status=GoalStatus.on_track))
        assert updated.status == GoalStatus.on_track
        assert updated.target_amount == Decimal("1000")


def test_add_funds_completes_goal_at_target() -> None:
    engine = _engine()
    with Session(engine) as session:
        user = _register(session, "alice")
        service = GoalService(session, user.id)
        goal = service.create(
            GoalIn(
                name="Bike",
                target_amount=Decimal("500"),
                current_amount=Decimal("400"),
                status=GoalStatus.on_track,
            )
        )

        partial = service.add_funds(goal.id, AddFundsIn(amount=Decimal("50")))
        assert partial.current_amount == Decimal("450")
        assert partial.status == GoalStatus.on_track

        done = service.add_funds(goal.id, AddFundsIn(amount=Decimal("50")))
        assert done.current_amount == Decimal("500")
        assert done.status == GoalStatus.completed


def test_foreign_goal_is_forbidden() -> None:
    engine = _engine()
    with Session(engine) as session:
        owner = _register(session, "alice")
        intruder = _register(session, "mallory")
        goal = GoalService(session, owner.id).create(
            GoalIn(name="Car", target_amount=Decimal("9000"))
        )
        service = GoalService(session, intruder.id, conceal_foreign_records=False)

        with pytest.raises(RecordForbidden, match="Not authorized to access this goal"):
            service.add_funds(goal.id, AddFundsIn(amount=Decimal("10")))
        with pytest.raises(RecordForbidden):
            service.delete(goal.id)

        session.expire_all()
        assert session.get(Goal, goal.id).current_amount == Decimal("0")
        assert service.list() == []


def test_expense_requires_existing_user() -> None:
    engine = _engine()
    with Session(engine) as session:
        session.add(
            Expense(
                user_id=999,
                amount=Decimal("1"),
                category=ExpenseCategory.other,
                date=date(2025, 3, 1),
            )
        )
        with pytest.raises(IntegrityError):
            session.commit()
