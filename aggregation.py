"""Statistics over a set of expenses.

Everything here is a pure function of its input. Money stays in integer
cents so category totals always add up to the overall total exactly;
averages and percentage changes are floats.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Generic, Iterable, Optional, TypeVar

from filtering import ExpenseLike
from models import ExpenseCategory

T = TypeVar("T", bound=ExpenseLike)

RECENT_MONTHS_LIMIT = 12


@dataclass(frozen=True)
class CategoryTrend:
    total_cents: int = 0
    count: int = 0
    average_cents: float = 0.0


@dataclass(frozen=True)
class StatisticsSnapshot(Generic[T]):
    count: int
    total_cents: int
    average_cents: float
    category_totals: dict[ExpenseCategory, int]
    category_trends: dict[ExpenseCategory, CategoryTrend]
    highest: Optional[T]
    lowest: Optional[T]
    monthly_totals: dict[str, int]
    monthly_counts: dict[str, int]
    monthly_category_totals: dict[str, dict[ExpenseCategory, int]]
    monthly_changes: dict[str, Optional[float]]
    daily_averages: dict[int, float]
    sorted_months: list[str] = field(default_factory=list)


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def weekday_index(value: date) -> int:
    # 0 = Sunday ... 6 = Saturday
    return (value.weekday() + 1) % 7


def percent_change(previous: int, current: int) -> Optional[float]:
    if previous == 0:
        return None
    return (current - previous) / previous * 100


def compute_statistics(expenses: Iterable[T]) -> StatisticsSnapshot[T]:
    category_totals = {category: 0 for category in ExpenseCategory}
    category_counts = {category: 0 for category in ExpenseCategory}
    monthly_totals: dict[str, int] = defaultdict(int)
    monthly_counts: dict[str, int] = defaultdict(int)
    monthly_categories: dict[str, dict[ExpenseCategory, int]] = defaultdict(
        lambda: defaultdict(int)
    )
    daily_totals: dict[date, int] = defaultdict(int)
    highest: Optional[T] = None
    lowest: Optional[T] = None
    count = 0
    total = 0

    for expense in expenses:
        amount = expense.amount_cents
        category = ExpenseCategory(expense.category)
        count += 1
        total += amount
        category_totals[category] += amount
        category_counts[category] += 1

        key = month_key(expense.date)
        monthly_totals[key] += amount
        monthly_counts[key] += 1
        monthly_categories[key][category] += amount
        daily_totals[expense.date] += amount

        if highest is None or amount > highest.amount_cents:
            highest = expense
        if lowest is None or amount < lowest.amount_cents:
            lowest = expense

    category_trends = {
        category: CategoryTrend(
            total_cents=category_totals[category],
            count=category_counts[category],
            average_cents=(
                category_totals[category] / category_counts[category]
                if category_counts[category]
                else 0.0
            ),
        )
        for category in ExpenseCategory
    }

    sorted_months = sorted(monthly_totals)
    monthly_changes: dict[str, Optional[float]] = {}
    for previous, current in zip(sorted_months, sorted_months[1:]):
        monthly_changes[current] = percent_change(
            monthly_totals[previous], monthly_totals[current]
        )

    weekday_sums: dict[int, int] = defaultdict(int)
    weekday_dates: dict[int, int] = defaultdict(int)
    for day, day_total in daily_totals.items():
        weekday = weekday_index(day)
        weekday_sums[weekday] += day_total
        weekday_dates[weekday] += 1
    daily_averages = {
        weekday: weekday_sums[weekday] / weekday_dates[weekday]
        for weekday in sorted(weekday_sums)
    }

    return StatisticsSnapshot(
        count=count,
        total_cents=total,
        average_cents=total / count if count else 0.0,
        category_totals=category_totals,
        category_trends=category_trends,
        highest=highest,
        lowest=lowest,
        monthly_totals={key: monthly_totals[key] for key in sorted_months},
        monthly_counts={key: monthly_counts[key] for key in sorted_months},
        monthly_category_totals={
            key: dict(monthly_categories[key]) for key in sorted_months
        },
        monthly_changes=monthly_changes,
        daily_averages=daily_averages,
        sorted_months=sorted_months,
    )


@dataclass(frozen=True)
class RecentMonths:
    totals: dict[str, int]
    changes: dict[str, Optional[float]]
    counts: dict[str, int]


def recent_months(
    snapshot: StatisticsSnapshot, limit: int = RECENT_MONTHS_LIMIT
) -> RecentMonths:
    """The ``limit`` most recent months, newest first."""
    months = sorted(snapshot.monthly_totals, reverse=True)[:limit]
    return RecentMonths(
        totals={key: snapshot.monthly_totals[key] for key in months},
        changes={
            key: snapshot.monthly_changes[key]
            for key in months
            if key in snapshot.monthly_changes
        },
        counts={key: snapshot.monthly_counts[key] for key in months},
    )
