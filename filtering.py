from __future__ import annotations

import locale
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol, TypeVar

from models import ExpenseCategory
from periods import DateRangePreset, Period, local_today, resolve_date_range

ALL_CATEGORIES = "all"


class SortKey(str, Enum):
    date = "date"
    amount = "amount"
    title = "title"


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


# "name" is what older clients and exported files call the title
SORT_KEY_ALIASES = {"name": SortKey.title}


class ExpenseLike(Protocol):
    title: str
    date: date
    category: ExpenseCategory

    @property
    def amount_cents(self) -> int: ...


T = TypeVar("T", bound=ExpenseLike)


@dataclass
class FilterSpec:
    search_term: Optional[str] = None
    category: Optional[ExpenseCategory | str] = None
    date_range: DateRangePreset = DateRangePreset.all_time
    custom_start: Optional[date] = None
    custom_end: Optional[date] = None
    sort_by: Optional[SortKey | str] = SortKey.date
    sort_order: SortOrder = SortOrder.desc

    def period(self, today: Optional[date] = None) -> Period:
        return resolve_date_range(
            self.date_range, self.custom_start, self.custom_end, today=today
        )

    def category_filter(self) -> Optional[ExpenseCategory]:
        if self.category is None or self.category == ALL_CATEGORIES:
            return None
        return ExpenseCategory(self.category)


def normalize_sort_key(value: Optional[SortKey | str]) -> Optional[SortKey]:
    if value is None:
        return None
    if isinstance(value, SortKey):
        return value
    alias = SORT_KEY_ALIASES.get(value)
    if alias:
        return alias
    try:
        return SortKey(value)
    except ValueError:
        return None


def search_key(text: Optional[str]) -> str:
    return (text or "").casefold()


def title_collation_key(title: Optional[str]) -> str:
    return locale.strxfrm(search_key(title))


_SORT_KEYS: dict[SortKey, Callable[[ExpenseLike], object]] = {
    SortKey.date: lambda expense: expense.date,
    SortKey.amount: lambda expense: expense.amount_cents,
    SortKey.title: lambda expense: title_collation_key(expense.title),
}


def matches(
    expense: ExpenseLike,
    spec: FilterSpec,
    *,
    today: Optional[date] = None,
    period: Optional[Period] = None,
) -> bool:
    term = search_key(spec.search_term).strip()
    if term and term not in search_key(expense.title):
        return False
    category = spec.category_filter()
    if category is not None and expense.category != category:
        return False
    period = period or spec.period(today)
    return period.contains(expense.date)


def filter_expenses(
    expenses: Iterable[T], spec: FilterSpec, *, today: Optional[date] = None
) -> list[T]:
    period = spec.period(today or local_today())
    return [
        expense for expense in expenses if matches(expense, spec, period=period)
    ]


def sort_expenses(
    expenses: Iterable[T],
    sort_by: Optional[SortKey | str],
    sort_order: SortOrder | str = SortOrder.desc,
) -> list[T]:
    """Order expenses by ``sort_by``.

    The sort is stable in both directions so equal keys keep their input
    order. An unknown key leaves the input order untouched.
    """
    items = list(expenses)
    key = normalize_sort_key(sort_by)
    if key is None:
        return items
    descending = SortOrder(sort_order) == SortOrder.desc
    return sorted(items, key=_SORT_KEYS[key], reverse=descending)


def apply_filters(
    expenses: Iterable[T], spec: FilterSpec, *, today: Optional[date] = None
) -> list[T]:
    filtered = filter_expenses(expenses, spec, today=today)
    return sort_expenses(filtered, spec.sort_by, spec.sort_order)
