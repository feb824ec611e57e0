from datetime import date

import pytest

from periods import ALL_TIME, DateRangePreset, parse_date, resolve_date_range


def test_all_time_and_empty_preset_are_unbounded() -> None:
    assert resolve_date_range(DateRangePreset.all_time) == ALL_TIME
    assert resolve_date_range(None) == ALL_TIME
    assert ALL_TIME.is_unbounded


def test_week_and_month_windows_end_today() -> None:
    today = date(2024, 3, 15)
    week = resolve_date_range("week", today=today)
    month = resolve_date_range("month", today=today)

    assert (week.start, week.end) == (date(2024, 3, 8), today)
    assert (month.start, month.end) == (date(2024, 2, 14), today)
    assert not week.contains(date(2024, 3, 16))


def test_custom_range_requires_both_bounds() -> None:
    assert resolve_date_range("custom", date(2024, 1, 1), None) == ALL_TIME
    period = resolve_date_range("custom", date(2024, 1, 1), date(2024, 1, 31))
    assert period.contains(date(2024, 1, 31))
    assert not period.contains(date(2024, 2, 1))


def test_unknown_preset_is_rejected() -> None:
    with pytest.raises(ValueError):
        resolve_date_range("fortnight")


def test_parse_date_accepts_datetime_strings() -> None:
    assert parse_date("2024-03-15T10:30:00Z") == date(2024, 3, 15)
    assert parse_date("  ") is None
    assert parse_date(None) is None
