"""Book availability accounting.

The ledger keeps ``0 <= available <= stock`` for every book and
``stock - available`` equal to the number of copies out on loan. All three
mutations are single conditional UPDATE statements, so they are atomic even
without the surrounding transaction; the services still run them inside
``Database.transaction()`` together with the borrowing row they belong to.
"""

import logging
import sqlite3

from librarydesk.errors import BookUnavailableError, InvalidInputError, NotFoundError
from librarydesk.models import Book, to_iso, utcnow
from librarydesk.repositories import BorrowingRepository

logger = logging.getLogger(__name__)


class AvailabilityLedger:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def _load(self, book_id: int) -> sqlite3.Row:
        row = self.conn.execute(
            "SELECT id, stock, available FROM books WHERE id = ?", (book_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("Book", book_id)
        return row

    def decrement(self, book_id: int) -> None:
        """Take one copy out. Raises BookUnavailableError when none is left."""
        cursor = self.conn.execute(
            "UPDATE books SET available = available - 1, updated_at = ? WHERE id = ? AND available > 0",
            (to_iso(utcnow()), book_id),
        )
        if cursor.rowcount == 0:
            self._load(book_id)
            raise BookUnavailableError(book_id)

    def increment(self, book_id: int) -> None:
        """Put one copy back, never above ``stock``."""
        row = self._load(book_id)
        if row["available"] >= row["stock"]:
            logger.warning(
                f"Book {book_id} already has all {row['stock']} copies available; increment clamped"
            )
        self.conn.execute(
            "UPDATE books SET available = MIN(stock, available + 1), updated_at = ? WHERE id = ?",
            (to_iso(utcnow()), book_id),
        )

    def resize(self, book_id: int, new_stock: int) -> Book:
        """Change the number of owned copies, keeping the copies in circulation out."""
        if new_stock is None or int(new_stock) < 0:
            raise InvalidInputError("Stock cannot be negative")
        new_stock = int(new_stock)
        self._load(book_id)
        # Open borrowings, not stock - available: a previous shrink may have floored available
        borrowed = BorrowingRepository(self.conn).count_active_for_book(book_id)
        if borrowed > new_stock:
            logger.warning(
                f"Book {book_id} resized to {new_stock} copies while {borrowed} are borrowed"
            )
        self.conn.execute("""
            UPDATE books
            SET available = MAX(0, ? - ?), stock = ?, updated_at = ?
            WHERE id = ?
        """, (new_stock, borrowed, new_stock, to_iso(utcnow()), book_id))
        updated = self.conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return Book.from_dict(dict(updated))

    def borrowed_count(self, book_id: int) -> int:
        row = self._load(book_id)
        return row["stock"] - row["available"]
