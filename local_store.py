"""Offline expense cache kept in two named JSON blobs.

``expenses`` holds the full expense array and ``expensePreferences`` the
last used filter and sort selections. The store is loaded once, every
mutating action writes the whole snapshot back, and nothing is ever merged
with the server.
"""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional, Protocol

from pydantic import ValidationError
from rapidfuzz.distance import Levenshtein

from aggregation import StatisticsSnapshot, compute_statistics
from csv_utils import cents_to_decimal, export_expenses, to_cents
from filtering import apply_filters
from models import ExpenseCategory, new_id
from schemas import ExpenseIn, ExpenseRecord, ExpenseUpdate, Preferences

logger = logging.getLogger(__name__)

EXPENSES_BLOB = "expenses"
PREFERENCES_BLOB = "expensePreferences"
ITEMS_PER_PAGE = 5

# keys written by older versions of the client
LEGACY_KEYS = {"name": "title", "desc": "description"}


class LocalStoreError(ValueError):
    pass


class ExpenseNotFound(LocalStoreError):
    pass


class CategoryNotFound(LocalStoreError):
    pass


class CategoryAmbiguous(LocalStoreError):
    pass


class ImportFailed(LocalStoreError):
    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class BlobStorage(Protocol):
    def get(self, name: str) -> Optional[str]: ...

    def set(self, name: str, value: str) -> None: ...


class MemoryStorage:
    def __init__(self) -> None:
        self.blobs: dict[str, str] = {}

    def get(self, name: str) -> Optional[str]:
        return self.blobs.get(name)

    def set(self, name: str, value: str) -> None:
        self.blobs[name] = value


class JsonFileStorage:
    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    def get(self, name: str) -> Optional[str]:
        path = self._path(name)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, name: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.directory, prefix=f".{name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, self._path(name))
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


@dataclass
class LocalSnapshot:
    expenses: list[ExpenseRecord] = field(default_factory=list)
    preferences: Preferences = field(default_factory=Preferences)


def resolve_category(raw: Any) -> ExpenseCategory:
    """Match a category name exactly, case-insensitively or within one edit."""
    name = str(raw or "").strip()
    if not name:
        raise CategoryNotFound("Category is required")
    lowered = name.lower()
    for category in ExpenseCategory:
        if category.value.lower() == lowered:
            return category

    best_distance: Optional[int] = None
    best: list[ExpenseCategory] = []
    for category in ExpenseCategory:
        dist = int(Levenshtein.distance(lowered, category.value.lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [category]
        elif dist == best_distance:
            best.append(category)

    if best_distance is not None and best_distance <= 1:
        if len(best) > 1:
            options = ", ".join(sorted(c.value for c in best))
            raise CategoryAmbiguous(
                f"Category '{name}' is ambiguous; matches: {options}"
            )
        return best[0]
    raise CategoryNotFound(f"Unknown category '{name}'")


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "item"
        parts.append(f"{loc}: {err.get('msg')}")
    return ", ".join(parts)


def parse_import(text: str) -> list[tuple[Optional[str], ExpenseIn]]:
    """Validate an uploaded JSON array with the same rules as manual entry."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ImportFailed([f"Invalid JSON: {exc.msg}"]) from exc
    if not isinstance(data, list):
        raise ImportFailed(["Expected a JSON array of expenses"])

    parsed: list[tuple[Optional[str], ExpenseIn]] = []
    errors: list[str] = []
    for idx, raw in enumerate(data, start=1):
        if not isinstance(raw, dict):
            errors.append(f"Item {idx}: expected an object")
            continue
        item = dict(raw)
        for legacy, current in LEGACY_KEYS.items():
            if legacy in item and current not in item:
                item[current] = item.pop(legacy)
        if isinstance(item.get("date"), str):
            item["date"] = item["date"][:10]
        raw_id = item.get("id")
        try:
            item["category"] = resolve_category(item.get("category"))
            parsed.append(
                (str(raw_id) if raw_id not in (None, "") else None, ExpenseIn(**item))
            )
        except ValidationError as exc:
            errors.append(f"Item {idx}: {_format_validation_error(exc)}")
        except LocalStoreError as exc:
            errors.append(f"Item {idx}: {exc}")
    if errors:
        raise ImportFailed(errors)
    return parsed


def _record_from_input(
    data: ExpenseIn, expense_id: Optional[str] = None
) -> ExpenseRecord:
    now = datetime.utcnow()
    return ExpenseRecord(
        id=expense_id or new_id(),
        title=data.title,
        amount=cents_to_decimal(data.amount_cents),
        date=data.date,
        category=data.category,
        description=data.description,
        created_at=now,
        updated_at=now,
    )


class LocalExpenseStore:
    def __init__(self, storage: BlobStorage) -> None:
        self.storage = storage
        self.snapshot = LocalSnapshot()

    def load(self) -> LocalSnapshot:
        raw_expenses = self.storage.get(EXPENSES_BLOB)
        raw_preferences = self.storage.get(PREFERENCES_BLOB)
        try:
            expenses = [
                ExpenseRecord.model_validate(item)
                for item in (json.loads(raw_expenses) if raw_expenses else [])
            ]
            preferences = (
                Preferences.model_validate_json(raw_preferences)
                if raw_preferences
                else Preferences()
            )
        except (json.JSONDecodeError, ValidationError, TypeError) as exc:
            raise LocalStoreError(f"Local data is corrupt: {exc}") from exc
        self.snapshot = LocalSnapshot(expenses=expenses, preferences=preferences)
        logger.info(f"local_store_loaded: expenses={len(expenses)}")
        return self.snapshot

    def save(self, snapshot: Optional[LocalSnapshot] = None) -> None:
        snapshot = snapshot or self.snapshot
        expenses_json = json.dumps(
            [
                expense.model_dump(mode="json", by_alias=True)
                for expense in snapshot.expenses
            ]
        )
        self.storage.set(EXPENSES_BLOB, expenses_json)
        self.storage.set(
            PREFERENCES_BLOB, snapshot.preferences.model_dump_json(by_alias=True)
        )
        self.snapshot = snapshot

    @property
    def expenses(self) -> list[ExpenseRecord]:
        return self.snapshot.expenses

    @property
    def preferences(self) -> Preferences:
        return self.snapshot.preferences

    def _find(self, expense_id: str) -> int:
        for idx, expense in enumerate(self.snapshot.expenses):
            if expense.id == expense_id:
                return idx
        raise ExpenseNotFound("Expense not found")

    def add_expense(self, data: ExpenseIn) -> ExpenseRecord:
        record = _record_from_input(data)
        self.save(
            LocalSnapshot(
                expenses=[*self.snapshot.expenses, record],
                preferences=self.snapshot.preferences,
            )
        )
        return record

    def update_expense(self, expense_id: str, data: ExpenseUpdate) -> ExpenseRecord:
        idx = self._find(expense_id)
        changes = data.changes()
        if "amount" in changes:
            changes["amount"] = cents_to_decimal(to_cents(changes["amount"]))
        changes["updated_at"] = datetime.utcnow()
        updated = self.snapshot.expenses[idx].model_copy(update=changes)
        expenses = list(self.snapshot.expenses)
        expenses[idx] = updated
        self.save(LocalSnapshot(expenses=expenses, preferences=self.preferences))
        return updated

    def delete_expense(self, expense_id: str) -> None:
        idx = self._find(expense_id)
        expenses = list(self.snapshot.expenses)
        del expenses[idx]
        self.save(LocalSnapshot(expenses=expenses, preferences=self.preferences))

    def bulk_import(self, text: str) -> list[ExpenseRecord]:
        parsed = parse_import(text)
        seen = {expense.id for expense in self.snapshot.expenses}
        imported: list[ExpenseRecord] = []
        for expense_id, data in parsed:
            if expense_id is None or expense_id in seen:
                expense_id = new_id()
            seen.add(expense_id)
            imported.append(_record_from_input(data, expense_id))
        self.save(
            LocalSnapshot(
                expenses=[*self.snapshot.expenses, *imported],
                preferences=self.preferences,
            )
        )
        logger.info(f"local_import: imported={len(imported)}")
        return imported

    def export_json(self) -> str:
        return json.dumps(
            [
                expense.model_dump(mode="json", by_alias=True)
                for expense in self.snapshot.expenses
            ],
            indent=2,
        )

    def export_csv(
        self, search_term: Optional[str] = None, *, today: Optional[date] = None
    ) -> str:
        return export_expenses(self.visible_expenses(search_term, today=today))

    def set_preferences(self, preferences: Preferences) -> None:
        self.save(LocalSnapshot(expenses=self.expenses, preferences=preferences))

    def visible_expenses(
        self, search_term: Optional[str] = None, *, today: Optional[date] = None
    ) -> list[ExpenseRecord]:
        spec = self.preferences.filter_spec(search_term)
        return apply_filters(self.expenses, spec, today=today)

    def statistics(
        self, search_term: Optional[str] = None, *, today: Optional[date] = None
    ) -> StatisticsSnapshot[ExpenseRecord]:
        return compute_statistics(self.visible_expenses(search_term, today=today))


def paginate(
    records: list[ExpenseRecord], page: int, per_page: int = ITEMS_PER_PAGE
) -> tuple[list[ExpenseRecord], int]:
    """Slice one page out of ``records``; returns the page and the page count."""
    page = max(page, 1)
    total_pages = math.ceil(len(records) / per_page)
    start = (page - 1) * per_page
    return records[start : start + per_page], total_pages
