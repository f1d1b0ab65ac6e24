"""users, expenses and goals

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


EXPENSE_CATEGORIES = (
    "Food",
    "Transport",
    "Entertainment",
    "Shopping",
    "Health",
    "Bills",
    "Other",
)
GOAL_STATUSES = ("in_progress", "on_track", "behind_schedule", "completed")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=100)),
        sa.Column("last_name", sa.String(length=100)),
        sa.Column("email", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("username"),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("amount", sa.String(length=40), nullable=False),
        sa.Column(
            "category",
            sa.Enum(*EXPENSE_CATEGORIES, name="expensecategory"),
            nullable=False,
        ),
        sa.Column("description", sa.String(length=200)),
        sa.Column("note", sa.Text()),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])
    op.create_index(
        "ix_expenses_user_category_date",
        "expenses",
        ["user_id", "category", "date"],
    )

    op.create_table(
        "goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("target_amount", sa.String(length=40), nullable=False),
        sa.Column(
            "current_amount", sa.String(length=40), nullable=False, server_default="0"
        ),
        sa.Column("target_date", sa.Date()),
        sa.Column(
            "status",
            sa.Enum(*GOAL_STATUSES, name="goalstatus"),
            nullable=False,
            server_default="in_progress",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("length(name) > 0", name="ck_goals_name_not_empty"),
    )
    op.create_index("ix_goals_user", "goals", ["user_id"])


def downgrade():
    op.drop_index("ix_goals_user", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_expenses_user_category_date", table_name="expenses")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("users")
