import os
import json
from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable that controls CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "CAMPUS_LIBRARY_OUTPUT"

_console = Console()

STATUS_STYLES = {
    "active": "green",
    "expired": "red",
    "delivered": "blue",
    "cancelled": "dim",
}


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_books(books: List[Any], empty_message: str = "No books in catalog.") -> None:
    """Print books in the current output mode.
    - plain: 'ID - Title by Author' lines
    - json: JSON array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Genre", style="white")
        table.add_column("Units", justify="right")
        table.add_column("Available")
        for b in books:
            table.add_row(b.id, b.title, b.author, b.genre or "", str(b.units), "yes" if b.available else "no")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author}")


def print_book_details(book: Any) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(book.to_dict(), ensure_ascii=False))
        return
    lines = [
        f"Title: {book.title}",
        f"Author: {book.author}",
        f"ID: {book.id}",
        f"ISBN: {book.isbn or '-'}",
        f"Genre: {book.genre or '-'}",
        f"Units: {book.units}",
        f"Status: {'Available' if book.available else 'Not available'}",
    ]
    if mode == "rich":
        _console.print(Panel.fit("\n".join(lines), title="📖 Book Found", border_style="blue"))
    else:
        print("Book Found")
        for line in lines:
            print(line)


def print_loans(loans: List[Any], empty_message: str = "No loans.") -> None:
    """Print loans; days remaining are computed at print time."""
    mode = get_output_mode()

    if not loans:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([loan.to_dict() for loan in loans], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📘 Loans", show_lines=True, header_style="bold cyan")
        table.add_column("Loan", style="magenta", no_wrap=True)
        table.add_column("Book")
        table.add_column("Pickup")
        table.add_column("Due")
        table.add_column("Days left", justify="right")
        table.add_column("Status")
        for loan in loans:
            style = STATUS_STYLES.get(loan.status.value, "white")
            table.add_row(
                loan.id,
                loan.book_data.title,
                loan.pickup_date.date().isoformat(),
                loan.due_date.date().isoformat(),
                str(loan.days_remaining()),
                f"[{style}]{loan.status.value}[/]",
            )
        _console.print(table)
    else:
        for loan in loans:
            print(
                f"{loan.id} - {loan.book_data.title} [{loan.status.value}] "
                f"due {loan.due_date.date().isoformat()} ({loan.days_remaining()} days left)"
            )


def print_loan_overview(overview: Dict[str, List[Any]]) -> None:
    if get_output_mode() == "json":
        print(json.dumps(
            {section: [loan.to_dict() for loan in loans] for section, loans in overview.items()},
            ensure_ascii=False,
        ))
        return
    for section in ("active", "expired", "history"):
        print(f"{section.capitalize()}:")
        print_loans(overview.get(section, []), empty_message="  (none)")
