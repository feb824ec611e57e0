import csv
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest

from csv_utils import export_expenses, parse_amount, sanitize_csv_value, to_cents
from models import ExpenseCategory
from schemas import ExpenseRecord


def test_parse_amount_accepts_common_formats() -> None:
    assert parse_amount("12,50") == Decimal("12.50")
    assert parse_amount("$1 200.00") == Decimal("1200.00")
    assert parse_amount("€3") == Decimal("3")


@pytest.mark.parametrize("raw", ["-5", "abc", "NaN", ""])
def test_parse_amount_rejects_invalid_values(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_to_cents_rounds_half_up() -> None:
    assert to_cents(Decimal("0.005")) == 1
    assert to_cents(Decimal("19.99")) == 1999


def test_sanitize_csv_value_neutralises_formulas() -> None:
    assert sanitize_csv_value("=SUM(A1:A2)") == "\t=SUM(A1:A2)"
    assert sanitize_csv_value("  Lunch ") == "Lunch"


def test_export_expenses_writes_header_and_rows() -> None:
    expense = ExpenseRecord(
        id="x",
        title="@home",
        amount=Decimal("7.5"),
        date=date(2024, 5, 1),
        category=ExpenseCategory.bills,
        description=None,
    )
    rows = list(csv.reader(StringIO(export_expenses([expense]))))

    assert rows[0] == ["Date", "Title", "Amount", "Category", "Description"]
    assert rows[1] == ["2024-05-01", "\t@home", "7.50", "Bills", ""]
