import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator

from librarydesk.errors import ConcurrencyConflictError

logger = logging.getLogger(__name__)


class Database:
    """SQLite access: one connection per unit of work.

    Connections are opened in autocommit mode (``isolation_level=None``) so that
    transactions are explicit. ``transaction()`` starts with ``BEGIN IMMEDIATE``,
    which takes the write lock up front: two borrow requests for the same copy
    are serialized instead of both reading the same ``available`` value.
    """

    def __init__(self, path: str, timeout: float = 10.0) -> None:
        if path == ":memory:":
            # Every unit of work opens its own connection, which would see an empty database.
            raise ValueError("An on-disk database file is required.")
        self.path = path
        self.timeout = timeout

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None,
                               check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection for reads and single statement writes."""
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block in a write transaction; any exception rolls everything back."""
        conn = self.connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                logger.warning(f"Could not acquire write lock on {self.path}: {exc}")
                raise ConcurrencyConflictError(
                    "Another operation is modifying the library, please retry."
                ) from exc
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create tables and indexes if they do not exist yet."""
        with self.connection() as conn:
            create_tables(conn)


def create_tables(conn: sqlite3.Connection) -> None:
    """Create the schema on the given connection."""
    # WAL lets readers proceed while a borrow transaction holds the write lock
    conn.execute("PRAGMA journal_mode=WAL;")
    cursor = conn.cursor()
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS books (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            author TEXT NOT NULL,
            category TEXT NOT NULL,
            isbn TEXT UNIQUE,
            published_year INTEGER,
            publisher TEXT,
            description TEXT,
            stock INTEGER NOT NULL CHECK(stock >= 0),
            available INTEGER NOT NULL CHECK(available >= 0 AND available <= stock),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS ebooks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            author TEXT NOT NULL,
            category TEXT NOT NULL,
            isbn TEXT UNIQUE,
            published_year INTEGER,
            publisher TEXT,
            description TEXT,
            cover_image TEXT,
            pdf_path TEXT NOT NULL,
            file_size INTEGER NOT NULL DEFAULT 0 CHECK(file_size >= 0),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            member_code TEXT NOT NULL UNIQUE,
            email TEXT UNIQUE,
            phone TEXT,
            address TEXT,
            status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'suspended')),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS borrowings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            book_id INTEGER NOT NULL,
            member_id INTEGER NOT NULL,
            borrow_date TEXT NOT NULL,
            due_date TEXT NOT NULL,
            return_date TEXT,
            status TEXT NOT NULL DEFAULT 'borrowed' CHECK(status IN ('borrowed', 'overdue', 'returned')),
            fine INTEGER NOT NULL DEFAULT 0 CHECK(fine >= 0),
            notes TEXT,
            FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
            FOREIGN KEY (member_id) REFERENCES members(id) ON DELETE CASCADE,
            CHECK((status = 'returned') = (return_date IS NOT NULL))
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS activity_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            admin_name TEXT NOT NULL,
            action TEXT NOT NULL CHECK(action IN ('create', 'update', 'delete', 'borrow', 'return')),
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            entity_name TEXT NOT NULL,
            details TEXT,
            timestamp TEXT NOT NULL
        )
    """)

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_category ON books(category)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_ebooks_title ON ebooks(title)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_members_name ON members(name)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrowings_book_status ON borrowings(book_id, status)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrowings_member_status ON borrowings(member_id, status)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrowings_due_date ON borrowings(status, due_date)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_activity_logs_timestamp ON activity_logs(timestamp DESC)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_activity_logs_action ON activity_logs(action)")
