"""Summary figures computed from a user's expenses and goals.

Everything here is a pure function over already-loaded records: nothing is
cached and nothing touches the database. Amounts are summed as ``Decimal`` so
category buckets always add up to the overall total exactly. Percentages are
rounded half-up to whole numbers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Optional, Protocol, Sequence

from models import ExpenseCategory, category_color
from periods import INSIGHT_RANGES, add_months, month_start, resolve_insight_range

ZERO = Decimal("0")
HUNDRED = Decimal("100")
HALF = Decimal("0.5")
CENT = Decimal("0.01")
WEEKDAYS = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)
MONTH_LABELS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


class ExpenseLike(Protocol):
    amount: Decimal
    category: ExpenseCategory
    date: date


class GoalLike(Protocol):
    current_amount: Decimal
    target_amount: Decimal


@dataclass(frozen=True)
class MonthComparison:
    current_total: Decimal
    previous_total: Decimal
    change: Decimal
    change_percent: int


@dataclass(frozen=True)
class CategoryShare:
    category: ExpenseCategory
    amount: Decimal
    percent: int
    color: str


@dataclass(frozen=True)
class CategoryBreakdown:
    total: Decimal
    items: list[CategoryShare] = field(default_factory=list)
    top_category: Optional[ExpenseCategory] = None
    top_percent: int = 0


@dataclass(frozen=True)
class TrendPoint:
    label: str
    year: int
    month: int
    total: Decimal


@dataclass(frozen=True)
class WeekdayAverage:
    day: int
    name: str
    total: Decimal
    count: int
    average: Decimal


@dataclass(frozen=True)
class WeekdaySummary:
    days: list[WeekdayAverage]
    highest_day: Optional[str]
    highest_average: Decimal


@dataclass(frozen=True)
class GoalProgress:
    id: Optional[int]
    name: Optional[str]
    percent: int


@dataclass(frozen=True)
class GoalsSummary:
    total_target: Decimal
    total_saved: Decimal
    percent: int
    goals: list[GoalProgress]


@dataclass(frozen=True)
class RecentExpense:
    id: Optional[int]
    amount: Decimal
    category: ExpenseCategory
    description: Optional[str]
    date: date


@dataclass(frozen=True)
class DashboardSummary:
    reference_date: date
    current_month_total: Decimal
    previous_month_total: Decimal
    month_over_month_percent: int
    total_saved: Decimal
    goals_progress: int
    top_category: Optional[ExpenseCategory]
    top_category_percent: int
    recent: list[RecentExpense]


@dataclass(frozen=True)
class Insights:
    range: str
    reference_date: date
    expense_count: int
    categories: CategoryBreakdown
    trend: list[TrendPoint]
    month_over_month: MonthComparison
    weekdays: WeekdaySummary


def round_percent(value: Decimal) -> int:
    """Round to a whole number with halves going up, so -2.5 becomes -2."""
    return int((Decimal(value) + HALF).to_integral_value(rounding=ROUND_FLOOR))


def percent_of(part: Decimal, whole: Decimal) -> int:
    if not whole:
        return 0
    return round_percent(Decimal(part) / Decimal(whole) * HUNDRED)


def _total(expenses: Sequence[ExpenseLike]) -> Decimal:
    return sum((Decimal(e.amount) for e in expenses), ZERO)


def month_total(expenses: Sequence[ExpenseLike], year: int, month: int) -> Decimal:
    return _total(
        [e for e in expenses if e.date.year == year and e.date.month == month]
    )


def monthly_total(expenses: Sequence[ExpenseLike], reference: date) -> Decimal:
    return month_total(expenses, reference.year, reference.month)


def compare_totals(current: Decimal, previous: Decimal) -> MonthComparison:
    if not previous:
        return MonthComparison(current, previous, ZERO, 0)
    change = current - previous
    return MonthComparison(current, previous, change, percent_of(change, previous))


def month_over_month(
    expenses: Sequence[ExpenseLike], reference: date
) -> MonthComparison:
    previous = add_months(month_start(reference), -1)
    return compare_totals(
        monthly_total(expenses, reference), monthly_total(expenses, previous)
    )


def category_breakdown(expenses: Sequence[ExpenseLike]) -> CategoryBreakdown:
    totals: dict[ExpenseCategory, Decimal] = {}
    for expense in expenses:
        category = ExpenseCategory(expense.category)
        totals[category] = totals.get(category, ZERO) + Decimal(expense.amount)
    if not totals:
        return CategoryBreakdown(total=ZERO)

    total = sum(totals.values(), ZERO)
    # sorted() is stable, so equal sums keep first-seen order
    ordered = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    items = [
        CategoryShare(
            category=category,
            amount=amount,
            percent=percent_of(amount, total),
            color=category_color(category),
        )
        for category, amount in ordered
    ]
    return CategoryBreakdown(
        total=total,
        items=items,
        top_category=items[0].category,
        top_percent=items[0].percent,
    )


def monthly_trend(
    expenses: Sequence[ExpenseLike], reference: date, months: int
) -> list[TrendPoint]:
    """Totals for ``months`` calendar months ending with the reference month."""
    if months < 1:
        raise ValueError("months must be positive")
    buckets: dict[tuple[int, int], Decimal] = {}
    for expense in expenses:
        key = (expense.date.year, expense.date.month)
        buckets[key] = buckets.get(key, ZERO) + Decimal(expense.amount)

    anchor = month_start(reference)
    points: list[TrendPoint] = []
    for offset in range(months - 1, -1, -1):
        d = add_months(anchor, -offset)
        points.append(
            TrendPoint(
                label=f"{MONTH_LABELS[d.month - 1]} {d.year}",
                year=d.year,
                month=d.month,
                total=buckets.get((d.year, d.month), ZERO),
            )
        )
    return points


def _to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def weekday_index(d: date) -> int:
    """Day of week with Sunday as 0."""
    return (d.weekday() + 1) % 7


def weekday_averages(expenses: Sequence[ExpenseLike]) -> WeekdaySummary:
    totals = [ZERO] * 7
    counts = [0] * 7
    for expense in expenses:
        idx = weekday_index(expense.date)
        totals[idx] += Decimal(expense.amount)
        counts[idx] += 1

    days: list[WeekdayAverage] = []
    highest_idx: Optional[int] = None
    highest_avg = ZERO
    # compare exact means; only the reported figures are rounded to cents
    for idx, name in enumerate(WEEKDAYS):
        mean = totals[idx] / counts[idx] if counts[idx] else ZERO
        days.append(
            WeekdayAverage(idx, name, totals[idx], counts[idx], _to_cents(mean))
        )
        if mean > highest_avg:
            highest_idx = idx
            highest_avg = mean
    return WeekdaySummary(
        days=days,
        highest_day=WEEKDAYS[highest_idx] if highest_idx is not None else None,
        highest_average=_to_cents(highest_avg),
    )


def goal_progress(goal: GoalLike) -> int:
    return percent_of(Decimal(goal.current_amount), Decimal(goal.target_amount))


def goals_progress(goals: Sequence[GoalLike]) -> GoalsSummary:
    total_target = sum((Decimal(g.target_amount) for g in goals), ZERO)
    total_saved = sum((Decimal(g.current_amount) for g in goals), ZERO)
    return GoalsSummary(
        total_target=total_target,
        total_saved=total_saved,
        percent=percent_of(total_saved, total_target),
        goals=[
            GoalProgress(
                id=getattr(g, "id", None),
                name=getattr(g, "name", None),
                percent=goal_progress(g),
            )
            for g in goals
        ],
    )


def _recent(expenses: Sequence[ExpenseLike], limit: int) -> list[ExpenseLike]:
    return sorted(expenses, key=lambda e: e.date, reverse=True)[:limit]


def dashboard_summary(
    expenses: Sequence[ExpenseLike],
    goals: Sequence[GoalLike],
    reference: date,
    *,
    recent: Optional[Sequence[ExpenseLike]] = None,
    recent_limit: int = 5,
) -> DashboardSummary:
    """Dashboard cards for the month of ``reference``.

    ``recent`` may be passed already loaded newest first; otherwise it is taken
    from ``expenses``.
    """
    if recent is None:
        recent = _recent(expenses, recent_limit)
    comparison = month_over_month(expenses, reference)
    current_month = [
        e
        for e in expenses
        if e.date.year == reference.year and e.date.month == reference.month
    ]
    breakdown = category_breakdown(current_month)
    goals_summary = goals_progress(goals)
    return DashboardSummary(
        reference_date=reference,
        current_month_total=comparison.current_total,
        previous_month_total=comparison.previous_total,
        month_over_month_percent=comparison.change_percent,
        total_saved=goals_summary.total_saved,
        goals_progress=goals_summary.percent,
        top_category=breakdown.top_category,
        top_category_percent=breakdown.top_percent,
        recent=[
            RecentExpense(
                id=getattr(e, "id", None),
                amount=Decimal(e.amount),
                category=ExpenseCategory(e.category),
                description=getattr(e, "description", None),
                date=e.date,
            )
            for e in recent[:recent_limit]
        ],
    )


def insights(
    expenses: Sequence[ExpenseLike], reference: date, range_slug: Optional[str] = None
) -> Insights:
    period = resolve_insight_range(range_slug, today=reference)
    filtered = [e for e in expenses if period.contains(e.date)]
    trend = monthly_trend(filtered, reference, INSIGHT_RANGES[period.slug])
    if len(trend) >= 2:
        comparison = compare_totals(trend[-1].total, trend[-2].total)
    else:
        current = trend[-1].total if trend else ZERO
        comparison = MonthComparison(current, ZERO, ZERO, 0)
    return Insights(
        range=period.slug,
        reference_date=reference,
        expense_count=len(filtered),
        categories=category_breakdown(filtered),
        trend=trend,
        month_over_month=comparison,
        weekdays=weekday_averages(filtered),
    )
