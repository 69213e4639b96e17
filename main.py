import logging
import subprocess
import sys
from datetime import timedelta
from functools import lru_cache
from typing import Optional

import typer
from rich.console import Console

from config import settings
from librarydesk.errors import LibraryError
from librarydesk.library import Library
from librarydesk.models import parse_datetime
from librarydesk.ui_helpers import print_rows, print_stats_result, set_output_mode

logging.basicConfig(level=settings.log_level)

APP_NAME = "Library Desk CLI"

console = Console()

app = typer.Typer(help=APP_NAME)

BOOK_COLUMNS = [("id", "ID"), ("title", "Title"), ("author", "Author"), ("category", "Category"),
                ("available", "Available"), ("stock", "Stock")]
EBOOK_COLUMNS = [("id", "ID"), ("title", "Title"), ("author", "Author"), ("category", "Category"),
                 ("file_size", "Size"), ("pdf_path", "File")]
MEMBER_COLUMNS = [("id", "ID"), ("member_code", "Code"), ("name", "Name"), ("status", "Status"),
                  ("email", "Email")]
BORROWING_COLUMNS = [("id", "ID"), ("book_title", "Book"), ("member_name", "Member"),
                     ("due_date", "Due"), ("status", "Status"), ("fine", "Fine")]
LOG_COLUMNS = [("timestamp", "Time"), ("admin_name", "Admin"), ("action", "Action"),
               ("entity_type", "Type"), ("entity_name", "Entity"), ("details", "Details")]


@lru_cache(maxsize=1)
def get_library() -> Library:
    """Library for this process, using LIBRARY_DB_FILE when set."""
    return Library()


def _fail(error: LibraryError) -> None:
    print(f"Error: {error.message}")
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    if output:
        set_output_mode(output)


@app.command("books")
def cli_books(query: Optional[str] = typer.Argument(None, help="Search title, author or category")):
    """List books with their available copies."""
    lib = get_library()
    books = lib.books.search(query) if query else lib.books.list()
    print_rows("📚 Books", BOOK_COLUMNS, [b.to_dict() for b in books], "No books in library.")


@app.command("ebooks")
def cli_ebooks(query: Optional[str] = typer.Argument(None, help="Search title, author or category")):
    """List e-books, newest first."""
    lib = get_library()
    ebooks = lib.ebooks.search(query) if query else lib.ebooks.list()
    print_rows("💾 E-books", EBOOK_COLUMNS, [e.to_dict() for e in ebooks], "No e-books in library.")


@app.command("members")
def cli_members(query: Optional[str] = typer.Argument(None, help="Search name, code or email")):
    """List members."""
    lib = get_library()
    members = lib.members.search(query) if query else lib.members.list()
    print_rows("👥 Members", MEMBER_COLUMNS, [m.to_dict() for m in members], "No members found.")


@app.command("borrow")
def cli_borrow(
    book_id: int,
    member_id: int,
    due: Optional[str] = typer.Option(None, "--due", help="Due date as ISO timestamp"),
    days: Optional[int] = typer.Option(None, "--days", help="Due in this many days"),
    notes: Optional[str] = typer.Option(None, "--notes"),
    admin: str = typer.Option("cli", "--admin", help="Admin name for the activity log"),
):
    """Lend a book to a member."""
    lib = get_library()
    if due:
        try:
            due_date = parse_datetime(due)
        except ValueError:
            print(f"Error: invalid due date {due}")
            raise typer.Exit(code=1)
    else:
        due_date = lib.now() + timedelta(days=days if days is not None else lib.policy.max_borrow_days)
    try:
        borrowing = lib.borrowings.create(book_id, member_id, due_date, notes=notes, admin_name=admin)
    except LibraryError as e:
        _fail(e)
    print(f"Borrowing {borrowing.id} created: {borrowing.book_title} -> {borrowing.member_name}, "
          f"due {borrowing.due_date.date().isoformat()}")


@app.command("return")
def cli_return(
    borrowing_id: int,
    admin: str = typer.Option("cli", "--admin", help="Admin name for the activity log"),
):
    """Return a borrowed book and show the fine."""
    lib = get_library()
    try:
        borrowing = lib.borrowings.return_book(borrowing_id, admin_name=admin)
    except LibraryError as e:
        _fail(e)
    if borrowing.fine:
        print(f"Borrowing {borrowing.id} returned. Fine: {borrowing.fine} {lib.policy.currency}")
    else:
        print(f"Borrowing {borrowing.id} returned. No fine.")


@app.command("overdue")
def cli_overdue():
    """List open borrowings past their due date."""
    lib = get_library()
    rows = [b.to_dict() for b in lib.borrowings.list_overdue()]
    print_rows("⏰ Overdue", BORROWING_COLUMNS, rows, "No overdue borrowings.")


@app.command("sweep-overdue")
def cli_sweep_overdue():
    """Mark open borrowings past their due date as overdue (run periodically)."""
    updated = get_library().borrowings.update_overdue_status()
    print(f"Marked {updated} borrowings as overdue.")


@app.command("stats")
def cli_stats():
    """Show library statistics."""
    print_stats_result(get_library().reports.overall())


@app.command("logs")
def cli_logs(
    limit: int = typer.Option(20, "--limit", "-n"),
    action: Optional[str] = typer.Option(None, "--action"),
    cleanup: Optional[int] = typer.Option(None, "--cleanup", help="Delete entries older than N days first"),
    prune: bool = typer.Option(False, "--prune", help="Delete entries past the configured retention first"),
):
    """Show recent activity log entries."""
    lib = get_library()
    if prune and cleanup is None:
        cleanup = settings.activity_log_retention_days
    if cleanup is not None:
        deleted = lib.activity.delete_older_than(cleanup)
        print(f"Deleted {deleted} old entries.")
    print_rows("📝 Activity", LOG_COLUMNS, lib.activity.list(limit=limit, action=action),
               "No activity recorded.")


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Start the API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    url = f"http://{host}:{port}/docs"
    console.print(f"[green]Starting API on [link={url}]{url}[/link][/]")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` could not be started. Make sure it is installed.")


if __name__ == "__main__":
    app()
