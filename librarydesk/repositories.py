"""SQL access for books, e-books, members and borrowings.

Repositories are bound to a connection so the services decide the
transaction boundaries: the same repository works inside
``Database.transaction()`` and on a plain read connection.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from librarydesk.models import (
    ACTIVE_STATUSES,
    STATUS_BORROWED,
    STATUS_OVERDUE,
    STATUS_RETURNED,
    Book,
    Borrowing,
    EBook,
    Member,
    to_iso,
)

_ACTIVE_PLACEHOLDERS = ", ".join("?" for _ in ACTIVE_STATUSES)


def _set_clause(fields: Dict[str, Any], allowed: Sequence[str]) -> str:
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")
    return ", ".join(f"{name} = ?" for name in fields)


class BookRepository:
    COLUMNS = ("title", "author", "category", "isbn", "published_year", "publisher",
               "description", "stock", "available")

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def find_by_id(self, book_id: int) -> Optional[Book]:
        row = self.conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def find_by_isbn(self, isbn: str) -> Optional[Book]:
        row = self.conn.execute("SELECT * FROM books WHERE isbn = ?", (isbn,)).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def find_all(self, limit: int = 100, offset: int = 0) -> List[Book]:
        rows = self.conn.execute(
            "SELECT * FROM books ORDER BY title LIMIT ? OFFSET ?", (limit, offset)
        ).fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def search(self, query: str) -> List[Book]:
        like = f"%{query}%"
        rows = self.conn.execute("""
            SELECT * FROM books
            WHERE title LIKE ? OR author LIKE ? OR category LIKE ?
            ORDER BY title
        """, (like, like, like)).fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def insert(self, book: Book, now: datetime) -> Book:
        stamp = to_iso(now)
        cursor = self.conn.execute("""
            INSERT INTO books (
                title, author, category, isbn, published_year, publisher,
                description, stock, available, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            book.title, book.author, book.category, book.isbn, book.published_year,
            book.publisher, book.description, book.stock, book.available, stamp, stamp,
        ))
        book.id = cursor.lastrowid
        book.created_at = stamp
        book.updated_at = stamp
        return book

    def update(self, book_id: int, fields: Dict[str, Any], now: datetime) -> None:
        if not fields:
            return
        set_clause = _set_clause(fields, self.COLUMNS)
        params = list(fields.values()) + [to_iso(now), book_id]
        self.conn.execute(f"UPDATE books SET {set_clause}, updated_at = ? WHERE id = ?", params)

    def delete(self, book_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        return cursor.rowcount > 0

    def totals(self) -> Dict[str, int]:
        row = self.conn.execute("""
            SELECT COUNT(*) AS total_books,
                   COALESCE(SUM(stock), 0) AS total_stock,
                   COALESCE(SUM(available), 0) AS total_available
            FROM books
        """).fetchone()
        return dict(row)

    def count_by_category(self) -> Dict[str, int]:
        rows = self.conn.execute(
            "SELECT category, COUNT(*) AS total FROM books GROUP BY category ORDER BY category"
        ).fetchall()
        return {row["category"]: row["total"] for row in rows}


class EBookRepository:
    COLUMNS = ("title", "author", "category", "isbn", "published_year", "publisher",
               "description", "cover_image", "pdf_path", "file_size")

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def find_by_id(self, ebook_id: int) -> Optional[EBook]:
        row = self.conn.execute("SELECT * FROM ebooks WHERE id = ?", (ebook_id,)).fetchone()
        return EBook.from_dict(dict(row)) if row else None

    def find_by_isbn(self, isbn: str) -> Optional[EBook]:
        row = self.conn.execute("SELECT * FROM ebooks WHERE isbn = ?", (isbn,)).fetchone()
        return EBook.from_dict(dict(row)) if row else None

    def find_all(self, limit: int = 100, offset: int = 0) -> List[EBook]:
        rows = self.conn.execute(
            "SELECT * FROM ebooks ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?", (limit, offset)
        ).fetchall()
        return [EBook.from_dict(dict(row)) for row in rows]

    def search(self, query: str) -> List[EBook]:
        like = f"%{query}%"
        rows = self.conn.execute("""
            SELECT * FROM ebooks
            WHERE title LIKE ? OR author LIKE ? OR category LIKE ?
            ORDER BY title
        """, (like, like, like)).fetchall()
        return [EBook.from_dict(dict(row)) for row in rows]

    def insert(self, ebook: EBook, now: datetime) -> EBook:
        stamp = to_iso(now)
        cursor = self.conn.execute("""
            INSERT INTO ebooks (
                title, author, category, isbn, published_year, publisher, description,
                cover_image, pdf_path, file_size, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            ebook.title, ebook.author, ebook.category, ebook.isbn, ebook.published_year,
            ebook.publisher, ebook.description, ebook.cover_image, ebook.pdf_path,
            ebook.file_size, stamp, stamp,
        ))
        ebook.id = cursor.lastrowid
        ebook.created_at = stamp
        ebook.updated_at = stamp
        return ebook

    def update(self, ebook_id: int, fields: Dict[str, Any], now: datetime) -> None:
        if not fields:
            return
        set_clause = _set_clause(fields, self.COLUMNS)
        params = list(fields.values()) + [to_iso(now), ebook_id]
        self.conn.execute(f"UPDATE ebooks SET {set_clause}, updated_at = ? WHERE id = ?", params)

    def delete(self, ebook_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM ebooks WHERE id = ?", (ebook_id,))
        return cursor.rowcount > 0

    def totals(self) -> Dict[str, int]:
        row = self.conn.execute(
            "SELECT COUNT(*) AS total_ebooks, COALESCE(SUM(file_size), 0) AS total_file_size FROM ebooks"
        ).fetchone()
        return dict(row)

    def count_by_category(self) -> Dict[str, int]:
        rows = self.conn.execute(
            "SELECT category, COUNT(*) AS total FROM ebooks GROUP BY category ORDER BY category"
        ).fetchall()
        return {row["category"]: row["total"] for row in rows}


class MemberRepository:
    COLUMNS = ("name", "member_code", "email", "phone", "address", "status")

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def find_by_id(self, member_id: int) -> Optional[Member]:
        row = self.conn.execute("SELECT * FROM members WHERE id = ?", (member_id,)).fetchone()
        return Member.from_dict(dict(row)) if row else None

    def find_by_code(self, member_code: str) -> Optional[Member]:
        row = self.conn.execute(
            "SELECT * FROM members WHERE member_code = ?", (member_code,)
        ).fetchone()
        return Member.from_dict(dict(row)) if row else None

    def find_by_email(self, email: str) -> Optional[Member]:
        row = self.conn.execute("SELECT * FROM members WHERE email = ?", (email,)).fetchone()
        return Member.from_dict(dict(row)) if row else None

    def find_all(self, limit: int = 100, offset: int = 0, status: Optional[str] = None) -> List[Member]:
        sql = "SELECT * FROM members"
        params: List[Any] = []
        if status:
            sql += " WHERE status = ?"
            params.append(status)
        sql += " ORDER BY name LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        rows = self.conn.execute(sql, params).fetchall()
        return [Member.from_dict(dict(row)) for row in rows]

    def search(self, query: str) -> List[Member]:
        like = f"%{query}%"
        rows = self.conn.execute("""
            SELECT * FROM members
            WHERE name LIKE ? OR member_code LIKE ? OR email LIKE ?
            ORDER BY name
        """, (like, like, like)).fetchall()
        return [Member.from_dict(dict(row)) for row in rows]

    def insert(self, member: Member, now: datetime) -> Member:
        stamp = to_iso(now)
        cursor = self.conn.execute("""
            INSERT INTO members (name, member_code, email, phone, address, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            member.name, member.member_code, member.email, member.phone,
            member.address, member.status, stamp, stamp,
        ))
        member.id = cursor.lastrowid
        member.created_at = stamp
        member.updated_at = stamp
        return member

    def update(self, member_id: int, fields: Dict[str, Any], now: datetime) -> None:
        if not fields:
            return
        set_clause = _set_clause(fields, self.COLUMNS)
        params = list(fields.values()) + [to_iso(now), member_id]
        self.conn.execute(f"UPDATE members SET {set_clause}, updated_at = ? WHERE id = ?", params)

    def delete(self, member_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM members WHERE id = ?", (member_id,))
        return cursor.rowcount > 0

    def count_by_status(self) -> Dict[str, int]:
        rows = self.conn.execute(
            "SELECT status, COUNT(*) AS total FROM members GROUP BY status"
        ).fetchall()
        return {row["status"]: row["total"] for row in rows}


class BorrowingRepository:
    _SELECT = """
        SELECT br.*, b.title AS book_title, m.name AS member_name
        FROM borrowings br
        JOIN books b ON b.id = br.book_id
        JOIN members m ON m.id = br.member_id
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def _fetch(self, where: str = "", params: Sequence[Any] = (), order: str = "br.borrow_date DESC",
               limit: Optional[int] = None, offset: int = 0) -> List[Borrowing]:
        sql = self._SELECT
        if where:
            sql += f" WHERE {where}"
        sql += f" ORDER BY {order}, br.id DESC"
        params = list(params)
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        rows = self.conn.execute(sql, params).fetchall()
        return [Borrowing.from_dict(dict(row)) for row in rows]

    def find_by_id(self, borrowing_id: int) -> Optional[Borrowing]:
        found = self._fetch("br.id = ?", (borrowing_id,))
        return found[0] if found else None

    def find_all(self, status: Optional[str] = None, member_id: Optional[int] = None,
                 book_id: Optional[int] = None, limit: int = 100, offset: int = 0) -> List[Borrowing]:
        clauses: List[str] = []
        params: List[Any] = []
        if status:
            clauses.append("br.status = ?")
            params.append(status)
        if member_id is not None:
            clauses.append("br.member_id = ?")
            params.append(member_id)
        if book_id is not None:
            clauses.append("br.book_id = ?")
            params.append(book_id)
        return self._fetch(" AND ".join(clauses), params, limit=limit, offset=offset)

    def find_by_member(self, member_id: int) -> List[Borrowing]:
        return self._fetch("br.member_id = ?", (member_id,))

    def find_active(self) -> List[Borrowing]:
        return self._fetch(f"br.status IN ({_ACTIVE_PLACEHOLDERS})", ACTIVE_STATUSES)

    def find_overdue(self, now: datetime) -> List[Borrowing]:
        return self._fetch(
            f"br.status IN ({_ACTIVE_PLACEHOLDERS}) AND br.due_date < ?",
            (*ACTIVE_STATUSES, to_iso(now)),
            order="br.due_date ASC",
        )

    def insert(self, borrowing: Borrowing) -> Borrowing:
        cursor = self.conn.execute("""
            INSERT INTO borrowings (book_id, member_id, borrow_date, due_date, status, fine, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            borrowing.book_id, borrowing.member_id, to_iso(borrowing.borrow_date),
            to_iso(borrowing.due_date), borrowing.status, borrowing.fine, borrowing.notes,
        ))
        borrowing.id = cursor.lastrowid
        return borrowing

    def mark_returned(self, borrowing_id: int, return_date: datetime, fine: int) -> bool:
        """Close an open borrowing. False if it was already returned (or is missing)."""
        cursor = self.conn.execute(f"""
            UPDATE borrowings SET return_date = ?, status = ?, fine = ?
            WHERE id = ? AND status IN ({_ACTIVE_PLACEHOLDERS})
        """, (to_iso(return_date), STATUS_RETURNED, fine, borrowing_id, *ACTIVE_STATUSES))
        return cursor.rowcount == 1

    def mark_overdue(self, now: datetime) -> int:
        cursor = self.conn.execute(
            "UPDATE borrowings SET status = ? WHERE status = ? AND due_date < ?",
            (STATUS_OVERDUE, STATUS_BORROWED, to_iso(now)),
        )
        return cursor.rowcount

    def count_active_for_member(self, member_id: int) -> int:
        row = self.conn.execute(
            f"SELECT COUNT(*) FROM borrowings WHERE member_id = ? AND status IN ({_ACTIVE_PLACEHOLDERS})",
            (member_id, *ACTIVE_STATUSES),
        ).fetchone()
        return row[0]

    def count_active_for_book(self, book_id: int) -> int:
        row = self.conn.execute(
            f"SELECT COUNT(*) FROM borrowings WHERE book_id = ? AND status IN ({_ACTIVE_PLACEHOLDERS})",
            (book_id, *ACTIVE_STATUSES),
        ).fetchone()
        return row[0]

    def stats(self, now: datetime) -> Dict[str, int]:
        row = self.conn.execute(f"""
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(status IN ({_ACTIVE_PLACEHOLDERS})), 0) AS active,
                   COALESCE(SUM(status IN ({_ACTIVE_PLACEHOLDERS}) AND due_date < ?), 0) AS overdue,
                   COALESCE(SUM(status = ?), 0) AS returned,
                   COALESCE(SUM(fine), 0) AS total_fines
            FROM borrowings
        """, (*ACTIVE_STATUSES, *ACTIVE_STATUSES, to_iso(now), STATUS_RETURNED)).fetchone()
        return dict(row)

    def borrow_counts_by_book(self, limit: int) -> List[Dict[str, Any]]:
        rows = self.conn.execute("""
            SELECT b.id AS book_id, b.title, b.author, b.available, COUNT(br.id) AS borrow_count
            FROM borrowings br JOIN books b ON b.id = br.book_id
            GROUP BY b.id
            ORDER BY borrow_count DESC, b.title ASC
            LIMIT ?
        """, (limit,)).fetchall()
        return [dict(row) for row in rows]

    def active_counts_by_member(self, limit: int) -> List[Dict[str, Any]]:
        rows = self.conn.execute(f"""
            SELECT m.id AS member_id, m.name, m.member_code, m.email, COUNT(br.id) AS active_borrowings
            FROM borrowings br JOIN members m ON m.id = br.member_id
            WHERE br.status IN ({_ACTIVE_PLACEHOLDERS})
            GROUP BY m.id
            ORDER BY active_borrowings DESC, m.name ASC
            LIMIT ?
        """, (*ACTIVE_STATUSES, limit)).fetchall()
        return [dict(row) for row in rows]
