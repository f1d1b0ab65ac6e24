from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class ExpenseCategory(str, Enum):
    food = "Food"
    transport = "Transport"
    entertainment = "Entertainment"
    shopping = "Shopping"
    health = "Health"
    bills = "Bills"
    other = "Other"


CATEGORY_COLORS: dict[ExpenseCategory, str] = {
    ExpenseCategory.food: "#3B82F6",
    ExpenseCategory.transport: "#8B5CF6",
    ExpenseCategory.entertainment: "#EF4444",
    ExpenseCategory.shopping: "#10B981",
    ExpenseCategory.health: "#EC4899",
    ExpenseCategory.bills: "#F59E0B",
    ExpenseCategory.other: "#6B7280",
}


def category_color(category: ExpenseCategory) -> str:
    return CATEGORY_COLORS.get(category, CATEGORY_COLORS[ExpenseCategory.other])


class GoalStatus(str, Enum):
    in_progress = "in_progress"
    on_track = "on_track"
    behind_schedule = "behind_schedule"
    completed = "completed"


EXPENSE_CATEGORY_ENUM = SAEnum(
    ExpenseCategory,
    name="expensecategory",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class DecimalText(TypeDecorator):
    """Stores ``Decimal`` values as their exact text form.

    Binary floats never touch the column: values are written with ``str()``
    and read back with ``Decimal()``, so sums computed later stay exact.
    """

    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    email: Mapped[Optional[str]] = mapped_column(String(255))

    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="user", cascade="all, delete-orphan"
    )
    goals: Mapped[list["Goal"]] = relationship(
        "Goal", back_populates="user", cascade="all, delete-orphan"
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    category: Mapped[ExpenseCategory] = mapped_column(
        EXPENSE_CATEGORY_ENUM, nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(String(200))
    note: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="expenses")

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_user_category_date", "user_id", "category", "date"),
    )


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_amount: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(
        DecimalText, nullable=False, default=Decimal("0")
    )
    target_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[GoalStatus] = mapped_column(
        SAEnum(GoalStatus), nullable=False, default=GoalStatus.in_progress
    )

    user: Mapped["User"] = relationship("User", back_populates="goals")

    __table_args__ = (
        Index("ix_goals_user", "user_id"),
        CheckConstraint("length(name) > 0", name="ck_goals_name_not_empty"),
    )
