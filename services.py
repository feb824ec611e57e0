from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from aggregation import StatisticsSnapshot, compute_statistics
from auth import hash_password, verify_password
from csv_utils import export_expenses, to_cents
from filtering import SortOrder, search_key
from models import Expense, ExpenseCategory, User
from periods import DateRangePreset, resolve_date_range
from schemas import ExpenseIn, ExpenseUpdate, UserIn

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100


class ExpenseNotFound(ValueError):
    pass


class UserNotFound(ValueError):
    pass


class EmailAlreadyRegistered(ValueError):
    pass


class InvalidCredentials(ValueError):
    pass


@dataclass
class ExpenseQuery:
    category: Optional[ExpenseCategory] = None
    search: Optional[str] = None
    date_range: Optional[DateRangePreset] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    sort_by: Optional[str] = "date"
    sort_order: SortOrder = SortOrder.desc


@dataclass
class Pagination:
    current_page: int
    limit: int
    total_pages: int
    total_expenses: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def compute(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if total else 0
        return cls(
            current_page=page,
            limit=limit,
            total_pages=total_pages,
            total_expenses=total,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


@dataclass
class ExpensePage:
    items: list[Expense]
    pagination: Pagination


SORT_COLUMNS = {
    "date": Expense.date,
    "amount": Expense.amount_cents,
    "title": Expense.title_search,
    "name": Expense.title_search,
    "createdAt": Expense.created_at,
}


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: UserIn) -> User:
        existing = self.session.scalar(
            select(User).where(func.lower(User.email) == data.email.lower())
        )
        if existing:
            raise EmailAlreadyRegistered("Email is already registered")
        user = User(
            name=data.name,
            email=data.email.lower(),
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_registered: id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.session.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        if not user or not verify_password(password, user.password_hash):
            logger.info("login_failed: reason=invalid_credentials")
            raise InvalidCredentials("Invalid email or password")
        return user

    def get(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise UserNotFound("User not found")
        return user


class ExpenseService:
    """CRUD and queries over the expenses of a single owner.

    Records owned by another user behave exactly like missing ones, so
    callers cannot tell whether an id exists elsewhere.
    """

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            title=data.title,
            title_search=search_key(data.title),
            amount_cents=data.amount_cents,
            date=data.date,
            category=data.category,
            description=data.description,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(f"expense_created: id={expense.id} user={self.user_id}")
        return expense

    def get(self, expense_id: str) -> Expense:
        expense = self.session.scalar(
            select(Expense).where(
                Expense.user_id == self.user_id, Expense.id == expense_id
            )
        )
        if not expense:
            raise ExpenseNotFound("Expense not found")
        return expense

    def update(self, expense_id: str, data: ExpenseUpdate) -> Expense:
        expense = self.get(expense_id)
        for field, value in data.changes().items():
            if field == "amount":
                expense.amount_cents = to_cents(value)
            elif field == "title":
                expense.title = value
                expense.title_search = search_key(value)
            else:
                setattr(expense, field, value)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(f"expense_updated: id={expense.id} user={self.user_id}")
        return expense

    def delete(self, expense_id: str) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()
        logger.info(f"expense_deleted: id={expense_id} user={self.user_id}")

    def _filtered(self, query: ExpenseQuery, today: Optional[date] = None) -> Select:
        stmt = select(Expense).where(Expense.user_id == self.user_id)
        if query.category:
            stmt = stmt.where(Expense.category == query.category)
        if query.search and query.search.strip():
            stmt = stmt.where(
                Expense.title_search.contains(
                    search_key(query.search).strip(), autoescape=True
                )
            )
        if query.date_range and query.date_range != DateRangePreset.custom:
            period = resolve_date_range(query.date_range, today=today)
            if not period.is_unbounded:
                stmt = stmt.where(Expense.date.between(period.start, period.end))
        if query.start_date:
            stmt = stmt.where(Expense.date >= query.start_date)
        if query.end_date:
            stmt = stmt.where(Expense.date <= query.end_date)
        return stmt

    def _ordered(self, stmt: Select, query: ExpenseQuery) -> Select:
        column = SORT_COLUMNS.get(query.sort_by or "")
        if column is not None:
            if SortOrder(query.sort_order) == SortOrder.asc:
                stmt = stmt.order_by(column.asc())
            else:
                stmt = stmt.order_by(column.desc())
        # equal keys keep insertion order
        return stmt.order_by(Expense.created_at.asc(), Expense.id.asc())

    def list(
        self,
        query: Optional[ExpenseQuery] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
        *,
        today: Optional[date] = None,
    ) -> ExpensePage:
        query = query or ExpenseQuery()
        if page < 1:
            raise ValueError("Page must be a positive integer")
        if not 1 <= limit <= MAX_PAGE_LIMIT:
            raise ValueError(f"Limit must be between 1 and {MAX_PAGE_LIMIT}")

        stmt = self._filtered(query, today)
        total = self.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        items = self.session.scalars(
            self._ordered(stmt, query).offset((page - 1) * limit).limit(limit)
        ).all()
        return ExpensePage(
            items=list(items), pagination=Pagination.compute(page, limit, total)
        )

    def all_matching(
        self, query: Optional[ExpenseQuery] = None, *, today: Optional[date] = None
    ) -> list[Expense]:
        query = query or ExpenseQuery()
        stmt = self._ordered(self._filtered(query, today), query)
        return list(self.session.scalars(stmt).all())

    def statistics(
        self, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> StatisticsSnapshot[Expense]:
        query = ExpenseQuery(
            start_date=start_date,
            end_date=end_date,
            sort_by="date",
            sort_order=SortOrder.asc,
        )
        return compute_statistics(self.all_matching(query))

    def export_csv(self, query: Optional[ExpenseQuery] = None) -> str:
        return export_expenses(self.all_matching(query))
