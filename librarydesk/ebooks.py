import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from librarydesk.activity import safe_record
from librarydesk.books import BookService
from librarydesk.database import Database
from librarydesk.errors import DuplicateError, InvalidInputError, NotFoundError
from librarydesk.models import EBook, utcnow
from librarydesk.repositories import EBookRepository
from librarydesk.validators import TextValidator

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "author", "category", "isbn", "published_year", "publisher",
                   "description", "cover_image", "pdf_path", "file_size")
TEXT_FIELDS = ("title", "author", "category", "publisher", "description", "cover_image", "pdf_path")
REQUIRED_FIELDS = ("title", "author", "category", "pdf_path")


def _clean_file_size(file_size: Any) -> int:
    try:
        size = int(file_size or 0)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Invalid file size: {file_size}")
    if size < 0:
        raise InvalidInputError("File size cannot be negative")
    return size


class EBookService:
    """Digital catalogue. E-books are metadata records; they are never lent."""

    def __init__(self, db: Database, recorder=None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.db = db
        self.recorder = recorder
        self.clock = clock or utcnow

    def create(self, title: str, author: str, category: str, pdf_path: str, file_size: int = 0,
               isbn: Optional[str] = None, published_year: Optional[int] = None,
               publisher: Optional[str] = None, description: Optional[str] = None,
               cover_image: Optional[str] = None, admin_name: str = "system") -> EBook:
        title, author, category, pdf_path = (TextValidator.clean(title), TextValidator.clean(author),
                                             TextValidator.clean(category), TextValidator.clean(pdf_path))
        if any(TextValidator.is_blank(value) for value in (title, author, category, pdf_path)):
            raise InvalidInputError("Title, author, category, and PDF file are required")
        isbn = BookService._clean_isbn(isbn)

        ebook = EBook(
            id=None,
            title=title,
            author=author,
            category=category,
            pdf_path=pdf_path,
            file_size=_clean_file_size(file_size),
            isbn=isbn,
            published_year=published_year,
            publisher=TextValidator.clean(publisher),
            description=TextValidator.clean(description),
            cover_image=TextValidator.clean(cover_image),
        )
        with self.db.transaction() as conn:
            ebooks = EBookRepository(conn)
            if isbn and ebooks.find_by_isbn(isbn):
                raise DuplicateError("An e-book with this ISBN already exists")
            ebooks.insert(ebook, self.clock())

        logger.info(f"E-book {ebook.id} created: {ebook.title} ({ebook.file_size} bytes)")
        safe_record(
            self.recorder,
            action="create",
            entity_type="ebook",
            entity_id=ebook.id,
            entity_name=ebook.title,
            details=f"File size: {ebook.file_size} bytes",
            admin_name=admin_name,
        )
        return ebook

    def get(self, ebook_id: int) -> EBook:
        with self.db.connection() as conn:
            ebook = EBookRepository(conn).find_by_id(ebook_id)
        if ebook is None:
            raise NotFoundError("E-book", ebook_id)
        return ebook

    def list(self, limit: int = 100, offset: int = 0) -> List[EBook]:
        """Newest first."""
        with self.db.connection() as conn:
            return EBookRepository(conn).find_all(limit, offset)

    def search(self, query: str) -> List[EBook]:
        with self.db.connection() as conn:
            return EBookRepository(conn).search(query.strip())

    def update(self, ebook_id: int, admin_name: str = "system", **changes: Any) -> EBook:
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidInputError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        fields = {name: value for name, value in changes.items() if value is not None}
        for name in TEXT_FIELDS:
            if name in fields:
                fields[name] = TextValidator.clean(fields[name])
        for required in REQUIRED_FIELDS:
            if required in fields and TextValidator.is_blank(fields[required]):
                raise InvalidInputError(f"{required.replace('_', ' ').capitalize()} cannot be empty")
        if "isbn" in fields:
            fields["isbn"] = BookService._clean_isbn(fields["isbn"])
        if "file_size" in fields:
            fields["file_size"] = _clean_file_size(fields["file_size"])

        with self.db.transaction() as conn:
            ebooks = EBookRepository(conn)
            existing = ebooks.find_by_id(ebook_id)
            if existing is None:
                raise NotFoundError("E-book", ebook_id)
            if fields.get("isbn") and fields["isbn"] != existing.isbn:
                other = ebooks.find_by_isbn(fields["isbn"])
                if other and other.id != ebook_id:
                    raise DuplicateError("An e-book with this ISBN already exists")
            ebooks.update(ebook_id, fields, self.clock())
            updated = ebooks.find_by_id(ebook_id)

        safe_record(
            self.recorder,
            action="update",
            entity_type="ebook",
            entity_id=updated.id,
            entity_name=updated.title,
            details="Updated e-book metadata",
            admin_name=admin_name,
        )
        return updated

    def delete(self, ebook_id: int, admin_name: str = "system") -> None:
        with self.db.transaction() as conn:
            ebooks = EBookRepository(conn)
            ebook = ebooks.find_by_id(ebook_id)
            if ebook is None:
                raise NotFoundError("E-book", ebook_id)
            ebooks.delete(ebook_id)

        logger.info(f"E-book {ebook_id} deleted")
        safe_record(
            self.recorder,
            action="delete",
            entity_type="ebook",
            entity_id=ebook.id,
            entity_name=ebook.title,
            details=f"File: {ebook.pdf_path}",
            admin_name=admin_name,
        )

    def stats(self) -> Dict[str, Any]:
        with self.db.connection() as conn:
            ebooks = EBookRepository(conn)
            totals = ebooks.totals()
            by_category = ebooks.count_by_category()
        return {
            "total_ebooks": totals["total_ebooks"],
            "total_file_size": totals["total_file_size"],
            "by_category": by_category,
        }
