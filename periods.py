import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

LIST_PERIODS = ("7days", "30days", "month", "year", "all")

# range slug -> number of trailing months shown in the trend
INSIGHT_RANGES: dict[str, int] = {
    "1month": 1,
    "3months": 3,
    "6months": 6,
    "1year": 12,
    "all": 24,
}
DEFAULT_INSIGHT_RANGE = "3months"


@dataclass(frozen=True)
class Period:
    slug: str
    start: Optional[date]
    end: Optional[date]

    def contains(self, value: date) -> bool:
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def add_months(d: date, count: int) -> date:
    """Shift ``d`` by ``count`` calendar months, clamping the day to the month end."""
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def resolve_list_period(period: Optional[str], *, today: date) -> Period:
    if not period or period == "all":
        return Period("all", None, None)
    if period == "7days":
        return Period("7days", today - timedelta(days=7), None)
    if period == "30days":
        return Period("30days", today - timedelta(days=30), None)
    if period == "month":
        return Period("month", month_start(today), month_end(today))
    if period == "year":
        return Period("year", date(today.year, 1, 1), date(today.year, 12, 31))
    raise ValueError(f"Unknown period: {period}")


def resolve_insight_range(range_slug: Optional[str], *, today: date) -> Period:
    slug = range_slug or DEFAULT_INSIGHT_RANGE
    if slug not in INSIGHT_RANGES:
        raise ValueError(f"Unknown range: {slug}")
    if slug == "all":
        return Period("all", None, None)
    return Period(slug, add_months(today, -INSIGHT_RANGES[slug]), None)
