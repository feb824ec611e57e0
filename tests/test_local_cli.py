import json

from local_cli import run


def test_add_list_and_stats(tmp_path, capsys) -> None:
    base = ["--data-dir", str(tmp_path)]

    assert run(base + ["add", "Lunch", "12,50", "--category", "food", "--date", "2024-01-05"]) == 0
    assert run(base + ["add", "Taxi", "30", "--category", "Transportation", "--date", "2024-02-05"]) == 0
    capsys.readouterr()

    assert run(base + ["list"]) == 0
    listing = capsys.readouterr().out
    assert listing.index("Taxi") < listing.index("Lunch")
    assert "Total: 42.50" in listing

    assert run(base + ["stats"]) == 0
    stats = capsys.readouterr().out
    assert "Expenses: 2" in stats
    assert "+140.0%" in stats


def test_prefs_are_saved(tmp_path) -> None:
    args = ["--category", "Travel", "--sort-by", "amount", "--sort-order", "asc"]

    assert run(["--data-dir", str(tmp_path), "prefs"] + args) == 0

    saved = json.loads((tmp_path / "expensePreferences.json").read_text())
    assert saved["selectedCategory"] == "Travel"
    assert saved["sortBy"] == "amount"
    assert saved["sortOrder"] == "asc"


def test_import_errors_exit_non_zero(tmp_path, capsys) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text(
        json.dumps([{"title": "X", "amount": -1, "date": "2024-01-01", "category": "Food"}])
    )

    assert run(["--data-dir", str(tmp_path), "import", str(bad)]) == 1
    assert "Item 1" in capsys.readouterr().err
    assert not (tmp_path / "expenses.json").exists()
