import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from librarydesk.activity import safe_record
from librarydesk.database import Database
from librarydesk.errors import ActiveBorrowingsError, DuplicateError, InvalidInputError, NotFoundError
from librarydesk.ledger import AvailabilityLedger
from librarydesk.models import Book, utcnow
from librarydesk.repositories import BookRepository, BorrowingRepository
from librarydesk.validators import ISBNValidator, TextValidator

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "author", "category", "isbn", "published_year", "publisher", "description")


class BookService:
    """Catalogue management. Copy counts change only through the availability ledger."""

    def __init__(self, db: Database, recorder=None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.db = db
        self.recorder = recorder
        self.clock = clock or utcnow

    @staticmethod
    def _clean_isbn(isbn: Optional[str]) -> Optional[str]:
        if TextValidator.is_blank(isbn):
            return None
        normalized = ISBNValidator.normalize_isbn(isbn)
        if not ISBNValidator.is_valid_isbn(normalized):
            raise InvalidInputError(f"Invalid ISBN: {isbn}")
        return normalized

    # ------------------------- Core operations ------------------------- #
    def create(self, title: str, author: str, category: str, stock: int = 1,
               isbn: Optional[str] = None, published_year: Optional[int] = None,
               publisher: Optional[str] = None, description: Optional[str] = None,
               admin_name: str = "system") -> Book:
        """Add a book; all copies start available."""
        title, author, category = (TextValidator.clean(title), TextValidator.clean(author),
                                   TextValidator.clean(category))
        if TextValidator.is_blank(title) or TextValidator.is_blank(author) or TextValidator.is_blank(category):
            raise InvalidInputError("Title, author, and category are required")
        if stock is None or int(stock) < 0:
            raise InvalidInputError("Stock cannot be negative")
        isbn = self._clean_isbn(isbn)

        book = Book(
            id=None,
            title=title,
            author=author,
            category=category,
            stock=int(stock),
            available=int(stock),
            isbn=isbn,
            published_year=published_year,
            publisher=TextValidator.clean(publisher),
            description=TextValidator.clean(description),
        )
        with self.db.transaction() as conn:
            books = BookRepository(conn)
            if isbn and books.find_by_isbn(isbn):
                raise DuplicateError(f"A book with ISBN {isbn} already exists")
            books.insert(book, self.clock())

        logger.info(f"Book {book.id} created: {book.title} ({book.stock} copies)")
        safe_record(
            self.recorder,
            action="create",
            entity_type="book",
            entity_id=book.id,
            entity_name=book.title,
            details=f"ISBN: {book.isbn or 'N/A'}, Stock: {book.stock}",
            admin_name=admin_name,
        )
        return book

    def get(self, book_id: int) -> Book:
        with self.db.connection() as conn:
            book = BookRepository(conn).find_by_id(book_id)
        if book is None:
            raise NotFoundError("Book", book_id)
        return book

    def list(self, limit: int = 100, offset: int = 0) -> List[Book]:
        with self.db.connection() as conn:
            return BookRepository(conn).find_all(limit, offset)

    def search(self, query: str) -> List[Book]:
        """Match title, author or category."""
        with self.db.connection() as conn:
            return BookRepository(conn).search(query.strip())

    def update(self, book_id: int, admin_name: str = "system", stock: Optional[int] = None,
               **changes: Any) -> Book:
        """Edit catalogue fields. A stock change keeps borrowed copies out of ``available``."""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidInputError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        fields = {name: value for name, value in changes.items() if value is not None}
        for name in ("title", "author", "category", "publisher", "description"):
            if name in fields:
                fields[name] = TextValidator.clean(fields[name])
        for required in ("title", "author", "category"):
            if required in fields and TextValidator.is_blank(fields[required]):
                raise InvalidInputError(f"{required.capitalize()} cannot be empty")
        if "isbn" in fields:
            fields["isbn"] = self._clean_isbn(fields["isbn"])
        if stock is not None and int(stock) < 0:
            raise InvalidInputError("Stock cannot be negative")

        with self.db.transaction() as conn:
            books = BookRepository(conn)
            existing = books.find_by_id(book_id)
            if existing is None:
                raise NotFoundError("Book", book_id)
            if fields.get("isbn") and fields["isbn"] != existing.isbn:
                other = books.find_by_isbn(fields["isbn"])
                if other and other.id != book_id:
                    raise DuplicateError(f"A book with ISBN {fields['isbn']} already exists")
            books.update(book_id, fields, self.clock())
            if stock is not None and int(stock) != existing.stock:
                AvailabilityLedger(conn).resize(book_id, int(stock))
            updated = books.find_by_id(book_id)

        safe_record(
            self.recorder,
            action="update",
            entity_type="book",
            entity_id=updated.id,
            entity_name=updated.title,
            details=f"Updated stock from {existing.stock} to {updated.stock}",
            admin_name=admin_name,
        )
        return updated

    def resize(self, book_id: int, new_stock: int, admin_name: str = "system") -> Book:
        return self.update(book_id, admin_name=admin_name, stock=new_stock)

    def delete(self, book_id: int, admin_name: str = "system") -> None:
        """Remove a book that has no copies out on loan."""
        with self.db.transaction() as conn:
            books = BookRepository(conn)
            book = books.find_by_id(book_id)
            if book is None:
                raise NotFoundError("Book", book_id)
            active = BorrowingRepository(conn).count_active_for_book(book_id)
            if active > 0:
                raise ActiveBorrowingsError("book", active)
            books.delete(book_id)

        logger.info(f"Book {book_id} deleted")
        safe_record(
            self.recorder,
            action="delete",
            entity_type="book",
            entity_id=book.id,
            entity_name=book.title,
            details=f"ISBN: {book.isbn or 'N/A'}, Stock: {book.stock}",
            admin_name=admin_name,
        )

    def stats(self) -> Dict[str, Any]:
        with self.db.connection() as conn:
            books = BookRepository(conn)
            totals = books.totals()
            by_category = books.count_by_category()
        return {
            "total_books": totals["total_books"],
            "total_stock": totals["total_stock"],
            "total_available": totals["total_available"],
            "total_borrowed": totals["total_stock"] - totals["total_available"],
            "by_category": by_category,
        }
