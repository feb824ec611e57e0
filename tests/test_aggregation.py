from datetime import date
from decimal import Decimal

import pytest

from aggregation import compute_statistics, percent_change, recent_months, weekday_index
from models import ExpenseCategory
from schemas import ExpenseRecord, StatisticsOut


def _expense(
    expense_id: str,
    amount: str,
    day: date,
    category: ExpenseCategory = ExpenseCategory.food,
) -> ExpenseRecord:
    return ExpenseRecord(
        id=expense_id,
        title=f"Expense {expense_id}",
        amount=Decimal(amount),
        date=day,
        category=category,
    )


def test_two_month_example() -> None:
    stats = compute_statistics(
        [
            _expense("1", "100", date(2024, 1, 5)),
            _expense("2", "50", date(2024, 2, 10)),
        ]
    )

    assert stats.count == 2
    assert stats.total_cents == 15000
    assert stats.average_cents == 7500
    assert stats.monthly_totals == {"2024-01": 10000, "2024-02": 5000}
    assert stats.monthly_changes == {"2024-02": -50.0}
    assert stats.category_totals[ExpenseCategory.food] == 15000
    assert stats.highest.id == "1"
    assert stats.lowest.id == "2"


def test_category_totals_sum_to_total() -> None:
    expenses = [
        _expense("1", "10.10", date(2024, 1, 1), ExpenseCategory.food),
        _expense("2", "0.20", date(2024, 1, 2), ExpenseCategory.bills),
        _expense("3", "99.99", date(2024, 2, 3), ExpenseCategory.travel),
        _expense("4", "0.01", date(2024, 3, 4), ExpenseCategory.other),
    ]
    stats = compute_statistics(expenses)

    assert sum(stats.category_totals.values()) == stats.total_cents == 11030
    assert stats.average_cents * stats.count == pytest.approx(stats.total_cents)
    assert set(stats.category_totals) == set(ExpenseCategory)


def test_empty_input() -> None:
    stats = compute_statistics([])

    assert stats.count == 0
    assert stats.total_cents == 0
    assert stats.average_cents == 0
    assert stats.highest is None
    assert stats.lowest is None
    assert stats.monthly_totals == {}
    assert stats.monthly_changes == {}
    assert stats.daily_averages == {}
    assert all(trend.count == 0 for trend in stats.category_trends.values())


def test_ties_go_to_first_record() -> None:
    stats = compute_statistics(
        [
            _expense("first", "20", date(2024, 1, 1)),
            _expense("second", "20", date(2024, 1, 2)),
        ]
    )
    assert stats.highest.id == "first"
    assert stats.lowest.id == "first"


def test_earliest_month_has_no_change_and_zero_baseline_is_none() -> None:
    stats = compute_statistics(
        [
            _expense("1", "0", date(2024, 1, 5)),
            _expense("2", "30", date(2024, 2, 5)),
            _expense("3", "45", date(2024, 3, 5)),
        ]
    )
    assert "2024-01" not in stats.monthly_changes
    assert stats.monthly_changes["2024-02"] is None
    assert stats.monthly_changes["2024-03"] == pytest.approx(50.0)
    assert percent_change(200, 100) == -50.0


def test_daily_averages_divide_by_distinct_dates() -> None:
    # 2024-01-01 and 2024-01-08 are both Mondays
    stats = compute_statistics(
        [
            _expense("1", "10", date(2024, 1, 1)),
            _expense("2", "20", date(2024, 1, 1)),
            _expense("3", "30", date(2024, 1, 8)),
            _expense("4", "5", date(2024, 1, 7)),
        ]
    )
    assert weekday_index(date(2024, 1, 1)) == 1
    assert weekday_index(date(2024, 1, 7)) == 0
    assert stats.daily_averages == {0: 500, 1: 3000}


def test_category_trends_average_per_expense() -> None:
    stats = compute_statistics(
        [
            _expense("1", "10", date(2024, 1, 1), ExpenseCategory.shopping),
            _expense("2", "30", date(2024, 1, 2), ExpenseCategory.shopping),
        ]
    )
    trend = stats.category_trends[ExpenseCategory.shopping]
    assert (trend.total_cents, trend.count, trend.average_cents) == (4000, 2, 2000)
    assert stats.monthly_category_totals == {
        "2024-01": {ExpenseCategory.shopping: 4000}
    }


def test_recent_months_are_newest_first_and_limited() -> None:
    expenses = [
        _expense(str(month), "10", date(2023, month, 1)) for month in range(1, 13)
    ] + [_expense("13", "20", date(2024, 1, 1))]
    stats = compute_statistics(expenses)
    months = recent_months(stats, limit=12)

    assert list(months.totals) == ["2024-01"] + [
        f"2023-{month:02d}" for month in range(12, 1, -1)
    ]
    assert "2023-01" not in months.totals
    assert months.changes["2024-01"] == pytest.approx(100.0)


def test_statistics_wire_shape() -> None:
    stats = compute_statistics(
        [
            _expense("1", "100", date(2024, 1, 5)),
            _expense("2", "50", date(2024, 2, 10)),
        ]
    )
    payload = StatisticsOut.from_snapshot(stats).model_dump(by_alias=True, mode="json")

    assert payload["totalExpenses"] == 2
    assert payload["totalAmount"] == 150.0
    assert payload["averageAmount"] == 75.0
    assert payload["monthlyTotals"] == {"2024-02": 50.0, "2024-01": 100.0}
    assert payload["monthlyChanges"] == {"2024-02": -50.0}
    assert payload["categoryTotals"]["Food"] == 150.0
    assert payload["highest"]["amount"] == 100.0
