import json
import os
from typing import Any, Dict, List, Sequence, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_rows(title: str, columns: Sequence[Tuple[str, str]], rows: List[Dict[str, Any]],
               empty_message: str) -> None:
    """Print dict rows in the current output mode.

    - plain: one ' | ' separated line per row
    - json: JSON array of the selected columns
    - rich: Rich table
    """
    mode = get_output_mode()

    if not rows:
        print(empty_message)
        return

    if mode == "json":
        payload = [{key: row.get(key) for key, _ in columns} for row in rows]
        print(json.dumps(payload, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for _, label in columns:
            table.add_column(label)
        for row in rows:
            table.add_row(*("" if row.get(key) is None else str(row.get(key)) for key, _ in columns))
        _console.print(table)
    else:
        for row in rows:
            print(" | ".join("-" if row.get(key) is None else str(row.get(key)) for key, _ in columns))


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print the overall statistics in the current output mode."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
        return

    books = stats.get("books", {})
    ebooks = stats.get("ebooks", {})
    members = stats.get("members", {})
    borrowings = stats.get("borrowings", {})
    lines = [
        f"Total Books: {books.get('total_books', 0)}",
        f"Copies Available: {books.get('total_available', 0)}/{books.get('total_stock', 0)}",
        f"E-books: {ebooks.get('total_ebooks', 0)}",
        f"Members: {members.get('total_members', 0)} ({members.get('suspended_members', 0)} suspended)",
        f"Active Borrowings: {borrowings.get('active', 0)}",
        f"Overdue Borrowings: {borrowings.get('overdue', 0)}",
        f"Total Fines: {borrowings.get('total_fines', 0)}",
    ]
    if mode == "rich":
        content = "\n".join(f"[bold]{label}:[/]{value}" for label, value in (line.split(":", 1) for line in lines))
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for line in lines:
            print(line)
