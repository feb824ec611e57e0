from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from aggregation import RECENT_MONTHS_LIMIT, StatisticsSnapshot, recent_months
from csv_utils import cents_to_amount, cents_to_decimal, to_cents
from filtering import ALL_CATEGORIES, FilterSpec, SortOrder
from models import Expense, ExpenseCategory, User
from periods import DateRangePreset

Title = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)
]
Description = Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)]
# any non-negative decimal; stored rounded half-up to whole cents
Amount = Annotated[Decimal, Field(ge=0, lt=Decimal("1e10"))]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    return value or None


class ExpenseIn(BaseModel):
    title: Title
    amount: Amount
    date: dt.date
    category: ExpenseCategory
    description: Optional[Description] = None

    @field_validator("description")
    @classmethod
    def _empty_description(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)


class ExpenseUpdate(BaseModel):
    title: Optional[Title] = None
    amount: Optional[Amount] = None
    date: Optional[dt.date] = None
    category: Optional[ExpenseCategory] = None
    description: Optional[Description] = None

    @field_validator("description")
    @classmethod
    def _empty_description(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)

    @model_validator(mode="after")
    def _required_fields_not_null(self) -> "ExpenseUpdate":
        for name in ("title", "amount", "date", "category"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ExpenseRecord(CamelModel):
    """An expense as it leaves the store, or as kept in the local cache."""

    id: str
    title: str
    amount: Decimal
    date: dt.date
    category: ExpenseCategory
    description: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)

    @field_serializer("amount")
    def _amount_as_number(self, value: Decimal) -> float:
        return float(value)

    @classmethod
    def from_expense(cls, expense: Expense | "ExpenseRecord") -> "ExpenseRecord":
        if isinstance(expense, ExpenseRecord):
            return expense
        return cls(
            id=expense.id,
            title=expense.title,
            amount=cents_to_decimal(expense.amount_cents),
            date=expense.date,
            category=expense.category,
            description=expense.description,
            created_at=expense.created_at,
            updated_at=expense.updated_at,
        )


class UserIn(BaseModel):
    name: Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)
    ]
    email: Annotated[
        str,
        StringConstraints(
            strip_whitespace=True,
            to_lower=True,
            max_length=255,
            pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
        ),
    ]
    password: str = Field(..., min_length=6, max_length=72)


class LoginIn(BaseModel):
    email: Annotated[str, StringConstraints(strip_whitespace=True, to_lower=True)]
    password: str


class UserOut(CamelModel):
    id: str
    name: str
    email: str
    created_at: Optional[dt.datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id, name=user.name, email=user.email, created_at=user.created_at
        )


class AuthOut(CamelModel):
    token: str
    user: UserOut


class TokenStatusOut(CamelModel):
    valid: bool
    user: UserOut


class PaginationOut(CamelModel):
    current_page: int
    limit: int
    total_pages: int
    total_expenses: int
    has_next_page: bool
    has_prev_page: bool


class ExpenseListOut(CamelModel):
    expenses: list[ExpenseRecord]
    pagination: PaginationOut


class MessageOut(CamelModel):
    message: str


class CategoryTrendOut(CamelModel):
    total: float
    count: int
    average: float


class StatisticsOut(CamelModel):
    total_expenses: int
    total_amount: float
    average_amount: float
    category_totals: dict[str, float]
    category_trends: dict[str, CategoryTrendOut]
    highest: Optional[ExpenseRecord] = None
    lowest: Optional[ExpenseRecord] = None
    monthly_totals: dict[str, float]
    monthly_changes: dict[str, Optional[float]]
    monthly_counts: dict[str, int]
    daily_averages: dict[str, float]

    @classmethod
    def from_snapshot(
        cls, snapshot: StatisticsSnapshot, month_limit: int = RECENT_MONTHS_LIMIT
    ) -> "StatisticsOut":
        months = recent_months(snapshot, month_limit)
        return cls(
            total_expenses=snapshot.count,
            total_amount=cents_to_amount(snapshot.total_cents),
            average_amount=cents_to_amount(snapshot.average_cents),
            category_totals={
                category.value: cents_to_amount(cents)
                for category, cents in snapshot.category_totals.items()
            },
            category_trends={
                category.value: CategoryTrendOut(
                    total=cents_to_amount(trend.total_cents),
                    count=trend.count,
                    average=cents_to_amount(trend.average_cents),
                )
                for category, trend in snapshot.category_trends.items()
            },
            highest=(
                ExpenseRecord.from_expense(snapshot.highest)
                if snapshot.highest is not None
                else None
            ),
            lowest=(
                ExpenseRecord.from_expense(snapshot.lowest)
                if snapshot.lowest is not None
                else None
            ),
            monthly_totals={
                key: cents_to_amount(cents) for key, cents in months.totals.items()
            },
            monthly_changes=months.changes,
            monthly_counts=months.counts,
            daily_averages={
                str(weekday): cents_to_amount(cents)
                for weekday, cents in snapshot.daily_averages.items()
            },
        )


class CustomDateRange(CamelModel):
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _empty_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Preferences(CamelModel):
    selected_category: str = ALL_CATEGORIES
    sort_by: str = "date"
    sort_order: SortOrder = SortOrder.desc
    date_range: DateRangePreset = DateRangePreset.all_time
    custom_date_range: CustomDateRange = Field(default_factory=CustomDateRange)

    @field_validator("selected_category")
    @classmethod
    def _known_category(cls, value: str) -> str:
        if value != ALL_CATEGORIES:
            ExpenseCategory(value)
        return value

    def filter_spec(self, search_term: Optional[str] = None) -> FilterSpec:
        return FilterSpec(
            search_term=search_term,
            category=self.selected_category,
            date_range=self.date_range,
            custom_start=self.custom_date_range.start_date,
            custom_end=self.custom_date_range.end_date,
            sort_by=self.sort_by,
            sort_order=self.sort_order,
        )
