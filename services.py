from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from auth import hash_password, verify_password
from config import get_settings
from models import Expense, ExpenseCategory, Goal, GoalStatus, User
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

logger = logging.getLogger(__name__)

DEMO_USERNAME = "testuser"
DEMO_PASSWORD = "password"


class RecordNotFound(ValueError):
    pass


class RecordForbidden(ValueError):
    pass


class DuplicateUsername(ValueError):
    pass


class InvalidCredentials(ValueError):
    pass


def local_today() -> date:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).date()


@dataclass
class ExpenseFilters:
    category: Optional[ExpenseCategory] = None
    period: Optional[Period] = None
    query: Optional[str] = None
    sort: str = "newest"


class _OwnedRecordService:
    model: type = None
    label: str = "Record"

    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        conceal_foreign_records: Optional[bool] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        if conceal_foreign_records is None:
            conceal_foreign_records = get_settings().conceal_foreign_records
        self.conceal_foreign_records = conceal_foreign_records

    def _load_owned(self, record_id: int):
        record = self.session.get(self.model, record_id)
        if record is None:
            raise RecordNotFound(f"{self.label} not found")
        if record.user_id != self.user_id:
            logger.warning(
                f"ownership_denied: model={self.label.lower()} "
                f"record_id={record_id} user_id={self.user_id}"
            )
            if self.conceal_foreign_records:
                raise RecordNotFound(f"{self.label} not found")
            raise RecordForbidden(
                f"Not authorized to access this {self.label.lower()}"
            )
        return record

    def _delete_owned(self, record_id: int) -> None:
        record = self._load_owned(record_id)
        self.session.delete(record)
        self.session.commit()
        logger.info(
            f"{self.label.lower()}_deleted: user_id={self.user_id} "
            f"{self.label.lower()}_id={record_id}"
        )


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_by_username(self, username: str) -> Optional[User]:
        stmt = select(User).where(func.lower(User.username) == username.strip().lower())
        return self.session.scalar(stmt)

    def register(self, data: RegisterIn) -> User:
        username = data.username.strip()
        if self.get_by_username(username):
            raise DuplicateUsername("Username already exists")
        user = User(
            username=username,
            password_hash=hash_password(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            email=data.email,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, username: str, password: str) -> User:
        user = self.get_by_username(username)
        if not user or not verify_password(password, user.password_hash):
            raise InvalidCredentials("Invalid username or password")
        return user

    def update_profile(self, user_id: int, data: ProfileIn) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise RecordNotFound("User not found")
        changes = data.model_dump(exclude_unset=True)
        if "username" in changes:
            clean_name = changes["username"].strip()
            existing = self.get_by_username(clean_name)
            if existing and existing.id != user.id:
                raise DuplicateUsername("Username already exists")
            changes["username"] = clean_name
        for field, value in changes.items():
            setattr(user, field, value)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"profile_updated: user_id={user.id} fields={sorted(changes)}")
        return user

    def change_password(self, user_id: int, data: PasswordChangeIn) -> None:
        user = self.session.get(User, user_id)
        if not user:
            raise RecordNotFound("User not found")
        if not verify_password(data.current_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect")
        user.password_hash = hash_password(data.new_password)
        self.session.commit()
        logger.info(f"password_changed: user_id={user.id}")

    def ensure_demo_user(self) -> User:
        existing = self.get_by_username(DEMO_USERNAME)
        if existing:
            logger.info("demo_user: already present, skipping")
            return existing
        user = self.register(
            RegisterIn(
                username=DEMO_USERNAME,
                password=DEMO_PASSWORD,
                first_name="Test",
                last_name="User",
                email="test@example.com",
            )
        )
        logger.info(f"demo_user: created user_id={user.id}")
        return user


class ExpenseService(_OwnedRecordService):
    model = Expense
    label = "Expense"

    def list(self, filters: Optional[ExpenseFilters] = None) -> list[Expense]:
        filters = filters or ExpenseFilters()
        stmt = select(Expense).where(Expense.user_id == self.user_id)
        if filters.category:
            stmt = stmt.where(Expense.category == filters.category)
        if filters.period is not None:
            if filters.period.start is not None:
                stmt = stmt.where(Expense.date >= filters.period.start)
            if filters.period.end is not None:
                stmt = stmt.where(Expense.date <= filters.period.end)
        if filters.query:
            needle = filters.query.strip().lower()
            like = f"%{needle}%"
            matching_categories = [
                c for c in ExpenseCategory if needle in c.value.lower()
            ]
            clauses = [
                func.lower(func.coalesce(Expense.description, "")).like(like),
                func.lower(func.coalesce(Expense.note, "")).like(like),
            ]
            if matching_categories:
                clauses.append(Expense.category.in_(matching_categories))
            stmt = stmt.where(or_(*clauses))

        if filters.sort == "oldest":
            stmt = stmt.order_by(Expense.date.asc(), Expense.id.asc())
        else:
            stmt = stmt.order_by(Expense.date.desc(), Expense.id.desc())
        items = list(self.session.scalars(stmt).all())

        # amounts are stored as decimal text, so order them in Python
        if filters.sort == "amount_high":
            items.sort(key=lambda e: e.amount, reverse=True)
        elif filters.sort == "amount_low":
            items.sort(key=lambda e: e.amount)
        return items

    def by_category(self, category: ExpenseCategory) -> list[Expense]:
        return self.list(ExpenseFilters(category=category))

    def by_date_range(self, start: date, end: date) -> list[Expense]:
        if start > end:
            raise ValueError("Start date must be before end date")
        return self.list(ExpenseFilters(period=Period("custom", start, end)))

    def recent(self, limit: int = 5) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, expense_id: int) -> Expense:
        return self._load_owned(expense_id)

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            amount=data.amount,
            category=data.category,
            description=data.description,
            note=data.note,
            date=data.date,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_created: user_id={self.user_id} expense_id={expense.id} "
            f"category={expense.category.value}"
        )
        return expense

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self._load_owned(expense_id)
        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(expense, field, value)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_updated: user_id={self.user_id} expense_id={expense.id} "
            f"fields={sorted(changes)}"
        )
        return expense

    def delete(self, expense_id: int) -> None:
        self._delete_owned(expense_id)


class GoalService(_OwnedRecordService):
    model = Goal
    label = "Goal"

    def list(self) -> list[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.user_id == self.user_id)
            .order_by(Goal.created_at.asc(), Goal.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, goal_id: int) -> Goal:
        return self._load_owned(goal_id)

    def create(self, data: GoalIn) -> Goal:
        goal = Goal(
            user_id=self.user_id,
            name=data.name.strip(),
            target_amount=data.target_amount,
            current_amount=data.current_amount,
            target_date=data.target_date,
            status=data.status,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        logger.info(f"goal_created: user_id={self.user_id} goal_id={goal.id}")
        return goal

    def update(self, goal_id: int, data: GoalUpdate) -> Goal:
        goal = self._load_owned(goal_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            changes["name"] = changes["name"].strip()
        for field, value in changes.items():
            setattr(goal, field, value)
        self.session.commit()
        self.session.refresh(goal)
        logger.info(
            f"goal_updated: user_id={self.user_id} goal_id={goal.id} "
            f"fields={sorted(changes)}"
        )
        return goal

    def add_funds(self, goal_id: int, data: AddFundsIn) -> Goal:
        goal = self._load_owned(goal_id)
        goal.current_amount = goal.current_amount + data.amount
        if goal.current_amount >= goal.target_amount:
            goal.status = GoalStatus.completed
        self.session.commit()
        self.session.refresh(goal)
        logger.info(
            f"goal_funded: user_id={self.user_id} goal_id={goal.id} "
            f"status={goal.status.value}"
        )
        return goal

    def delete(self, goal_id: int) -> None:
        self._delete_owned(goal_id)
