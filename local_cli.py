import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from config import get_settings
from csv_utils import cents_to_amount, parse_amount
from filtering import SortOrder
from local_store import (
    ITEMS_PER_PAGE,
    JsonFileStorage,
    LocalExpenseStore,
    LocalStoreError,
    paginate,
    resolve_category,
)
from periods import DateRangePreset, parse_date
from schemas import CustomDateRange, ExpenseIn

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]


def format_amount(cents: float) -> str:
    return f"{cents_to_amount(cents):,.2f}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="expenses-local", description="Offline expense tracker"
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory holding the local JSON blobs",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Add an expense")
    add.add_argument("title")
    add.add_argument("amount")
    add.add_argument("--category", required=True)
    add.add_argument("--date", dest="expense_date", default=None)
    add.add_argument("--description", default=None)

    listing = sub.add_parser("list", help="List expenses using saved preferences")
    listing.add_argument("--search", default=None)
    listing.add_argument("--page", type=int, default=1)

    delete = sub.add_parser("delete", help="Delete an expense")
    delete.add_argument("expense_id")

    stats = sub.add_parser("stats", help="Show statistics for the visible expenses")
    stats.add_argument("--search", default=None)

    importer = sub.add_parser("import", help="Import expenses from a JSON file")
    importer.add_argument("file", type=Path)

    exporter = sub.add_parser("export", help="Export expenses")
    exporter.add_argument("--format", choices=["json", "csv"], default="json")

    prefs = sub.add_parser("prefs", help="Show or change saved preferences")
    prefs.add_argument("--category", default=None)
    prefs.add_argument("--sort-by", default=None)
    prefs.add_argument("--sort-order", choices=[o.value for o in SortOrder])
    prefs.add_argument("--range", choices=[p.value for p in DateRangePreset])
    prefs.add_argument("--start", default=None)
    prefs.add_argument("--end", default=None)
    return parser


def _cmd_add(store: LocalExpenseStore, args: argparse.Namespace) -> int:
    data = ExpenseIn(
        title=args.title,
        amount=parse_amount(args.amount),
        date=parse_date(args.expense_date) or date.today(),
        category=resolve_category(args.category),
        description=args.description,
    )
    record = store.add_expense(data)
    print(f"Added {record.id}")
    return 0


def _cmd_list(store: LocalExpenseStore, args: argparse.Namespace) -> int:
    visible = store.visible_expenses(args.search)
    page_items, total_pages = paginate(visible, args.page, ITEMS_PER_PAGE)
    for expense in page_items:
        print(
            f"{expense.id}  {expense.date.isoformat()}  {expense.category.value:<14} "
            f"{format_amount(expense.amount_cents):>12}  {expense.title}"
        )
    total = sum(expense.amount_cents for expense in visible)
    print(f"Page {max(args.page, 1)}/{max(total_pages, 1)}  Total: {format_amount(total)}")
    return 0


def _cmd_stats(store: LocalExpenseStore, args: argparse.Namespace) -> int:
    stats = store.statistics(args.search)
    print(f"Expenses: {stats.count}")
    print(f"Total:    {format_amount(stats.total_cents)}")
    print(f"Average:  {format_amount(stats.average_cents)}")
    if stats.highest is not None:
        print(f"Highest:  {stats.highest.title} ({format_amount(stats.highest.amount_cents)})")
    if stats.lowest is not None:
        print(f"Lowest:   {stats.lowest.title} ({format_amount(stats.lowest.amount_cents)})")
    print("By category:")
    for category, trend in stats.category_trends.items():
        print(
            f"  {category.value:<14} {format_amount(trend.total_cents):>12}  "
            f"n={trend.count}  avg={format_amount(trend.average_cents)}"
        )
    print("By month:")
    for month in stats.sorted_months:
        change = stats.monthly_changes.get(month)
        change_text = "" if change is None else f"  {change:+.1f}%"
        print(f"  {month}  {format_amount(stats.monthly_totals[month]):>12}{change_text}")
    print("Average per weekday:")
    for weekday, cents in stats.daily_averages.items():
        print(f"  {WEEKDAY_NAMES[weekday]:<10} {format_amount(cents):>12}")
    return 0


def _cmd_prefs(store: LocalExpenseStore, args: argparse.Namespace) -> int:
    changes: dict[str, object] = {}
    if args.category is not None:
        changes["selected_category"] = (
            "all" if args.category == "all" else resolve_category(args.category).value
        )
    if args.sort_by is not None:
        changes["sort_by"] = args.sort_by
    if args.sort_order is not None:
        changes["sort_order"] = SortOrder(args.sort_order)
    if args.range is not None:
        changes["date_range"] = DateRangePreset(args.range)
        if args.range != DateRangePreset.custom.value:
            changes["custom_date_range"] = CustomDateRange()
    if args.start is not None or args.end is not None:
        current = store.preferences.custom_date_range
        changes["custom_date_range"] = CustomDateRange(
            start_date=parse_date(args.start) if args.start else current.start_date,
            end_date=parse_date(args.end) if args.end else current.end_date,
        )
    if changes:
        prefs = store.preferences.model_validate(
            {**store.preferences.model_dump(), **changes}
        )
        store.set_preferences(prefs)
    print(store.preferences.model_dump_json(by_alias=True, indent=2))
    return 0


def run(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    data_dir = args.data_dir or get_settings().local_dir
    store = LocalExpenseStore(JsonFileStorage(data_dir))
    try:
        store.load()
        if args.command == "add":
            return _cmd_add(store, args)
        if args.command == "list":
            return _cmd_list(store, args)
        if args.command == "delete":
            store.delete_expense(args.expense_id)
            print(f"Deleted {args.expense_id}")
            return 0
        if args.command == "stats":
            return _cmd_stats(store, args)
        if args.command == "import":
            imported = store.bulk_import(args.file.read_text(encoding="utf-8"))
            print(f"Successfully imported {len(imported)} expenses")
            return 0
        if args.command == "export":
            print(store.export_json() if args.format == "json" else store.export_csv())
            return 0
        if args.command == "prefs":
            return _cmd_prefs(store, args)
    except (LocalStoreError, ValidationError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 2


def main() -> None:
    logging.basicConfig(level=logging.WARNING)
    sys.exit(run())


if __name__ == "__main__":
    main()
