import csv
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from io import StringIO
from typing import Iterable

from filtering import ExpenseLike


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: float) -> float:
    return cents / 100


def cents_to_decimal(cents: int) -> Decimal:
    return Decimal(cents) / 100


def parse_amount(value: str) -> Decimal:
    """Parse a user-typed amount such as ``"12,50"`` or ``"$1 200.00"``."""
    clean = value.strip().replace("€", "").replace("₹", "").replace("$", "")
    clean = clean.replace(" ", "").replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if amount < 0:
        raise ValueError("Amount must be positive")
    return amount


def export_expenses(expenses: Iterable[ExpenseLike]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["Date", "Title", "Amount", "Category", "Description"])
    for expense in expenses:
        writer.writerow(
            [
                expense.date.isoformat(),
                sanitize_csv_value(expense.title),
                f"{expense.amount_cents / 100:.2f}",
                expense.category.value,
                sanitize_csv_value(getattr(expense, "description", None) or ""),
            ]
        )
    return output.getvalue()
