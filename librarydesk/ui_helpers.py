import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table

# CLI çıktı modunu kontrol eden ortam değişkeni
# İzin verilen değerler: 'plain' (varsayılan), 'json', 'rich'
OUTPUT_MODE_ENV = "LIBRARYDESK_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _print_rows(title: str, columns: List[str], rows: List[Dict[str, Any]], empty: str,
                plain_line) -> None:
    mode = get_output_mode()
    if not rows:
        print(empty)
        return
    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for col in columns:
            table.add_column(col.replace("_", " ").title())
        for row in rows:
            table.add_row(*[str(row.get(col, "")) for col in columns])
        _console.print(table)
    else:
        for row in rows:
            print(plain_line(row))


def print_books(books: List[Any]) -> None:
    """Kitap listesini mevcut çıktı moduna göre yazdır.
    - plain: 'id - Title by Author (available/quantity)' satırları
    - json: JSON dizisi
    - rich: Rich tablosu
    """
    _print_rows(
        "📚 Books",
        ["id", "title", "author", "available_quantity", "quantity"],
        [b.to_dict() for b in books],
        "No books in library.",
        lambda r: f"{r['id']} - {r['title']} by {r['author']} ({r['available_quantity']}/{r['quantity']})",
    )


def print_loans(loans: List[Any]) -> None:
    _print_rows(
        "📖 Loans",
        ["id", "user_id", "book_title", "borrow_date", "due_date", "status", "return_date"],
        [loan.to_dict() for loan in loans],
        "No loans found.",
        lambda r: f"#{r['id']} {r['book_title']} - {r['status']} (due {r['due_date']})",
    )


def print_sweep_reports(reports: List[Any]) -> None:
    _print_rows(
        "🔔 Sweeps",
        ["name", "scanned", "emitted", "skipped", "failed"],
        [
            {"name": r.name, "scanned": r.scanned, "emitted": r.emitted,
             "skipped": r.skipped, "failed": r.failed, "error": r.error}
            for r in reports
        ],
        "No sweeps run.",
        lambda r: (f"{r['name']}: scanned {r['scanned']}, emitted {r['emitted']}, "
                   f"skipped {r['skipped']}, failed {r['failed']}"
                   + (f" (error: {r['error']})" if r.get("error") else "")),
    )
