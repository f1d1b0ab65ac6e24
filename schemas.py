import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import ExpenseCategory, GoalStatus


def _reject_explicit_nulls(model: BaseModel, fields: tuple[str, ...]) -> None:
    for name in fields:
        if name in model.model_fields_set and getattr(model, name) is None:
            raise ValueError(f"{name} cannot be null")


class RegisterIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=1, max_length=200)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(
        default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
    )


class LoginIn(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ProfileIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: Optional[str] = Field(default=None, min_length=3, max_length=100)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(
        default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
    )

    @model_validator(mode="after")
    def username_not_null(self) -> "ProfileIn":
        _reject_explicit_nulls(self, ("username",))
        return self


class PasswordChangeIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=200)
    confirm_password: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def passwords_match(self) -> "PasswordChangeIn":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    first_name: Optional[str]
    last_name: Optional[str]
    email: Optional[str]
    created_at: datetime


class ExpenseIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    category: ExpenseCategory
    description: Optional[str] = Field(default=None, max_length=200)
    note: Optional[str] = Field(default=None, max_length=1000)
    date: dt.date


class ExpenseUpdate(BaseModel):
    """Partial update: only the fields present in the payload are applied."""

    model_config = ConfigDict(extra="forbid")

    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    category: Optional[ExpenseCategory] = None
    description: Optional[str] = Field(default=None, max_length=200)
    note: Optional[str] = Field(default=None, max_length=1000)
    date: Optional[dt.date] = None

    @model_validator(mode="after")
    def required_columns_not_null(self) -> "ExpenseUpdate":
        _reject_explicit_nulls(self, ("amount", "category", "date"))
        return self


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    amount: Decimal
    category: ExpenseCategory
    description: Optional[str]
    note: Optional[str]
    date: dt.date
    created_at: datetime


class GoalIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=120)
    target_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    current_amount: Decimal = Field(
        default=Decimal("0"), ge=0, max_digits=12, decimal_places=2
    )
    target_date: Optional[date] = None
    status: GoalStatus = GoalStatus.in_progress


class GoalUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    target_amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    current_amount: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )
    target_date: Optional[date] = None
    status: Optional[GoalStatus] = None

    @model_validator(mode="after")
    def required_columns_not_null(self) -> "GoalUpdate":
        _reject_explicit_nulls(
            self, ("name", "target_amount", "current_amount", "status")
        )
        return self


class AddFundsIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class GoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    target_amount: Decimal
    current_amount: Decimal
    target_date: Optional[date]
    status: GoalStatus
    created_at: datetime


class CategoryOut(BaseModel):
    name: ExpenseCategory
    color: str
