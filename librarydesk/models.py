from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

MEMBER_ACTIVE = "active"
MEMBER_SUSPENDED = "suspended"
MEMBER_STATUSES = (MEMBER_ACTIVE, MEMBER_SUSPENDED)

STATUS_BORROWED = "borrowed"
STATUS_OVERDUE = "overdue"
STATUS_RETURNED = "returned"
BORROWING_STATUSES = (STATUS_BORROWED, STATUS_OVERDUE, STATUS_RETURNED)
# Overdue is a sub-state of borrowed: the copy is still out.
ACTIVE_STATUSES = (STATUS_BORROWED, STATUS_OVERDUE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO string or datetime into an aware UTC datetime. Naive values are UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif not isinstance(value, datetime):
        raise TypeError(f"Expected an ISO string or datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Union[str, datetime, None]) -> Optional[str]:
    """Fixed-width UTC ISO string, so SQL string comparison follows time order."""
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    return parsed.isoformat(timespec="microseconds")


class Book:
    """A title in the catalogue and its copy counts."""

    def __init__(self, id: Optional[int], title: str, author: str, category: str,
                 stock: int, available: int, isbn: str | None = None,
                 published_year: int | None = None, publisher: str | None = None,
                 description: str | None = None, created_at: str | None = None,
                 updated_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.category = category.strip()
        self.stock = int(stock)
        self.available = int(available)
        self.isbn = isbn
        self.published_year = published_year
        self.publisher = publisher
        self.description = description
        self.created_at = created_at
        self.updated_at = updated_at

    @property
    def borrowed(self) -> int:
        return self.stock - self.available

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.available}/{self.stock} available)"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "stock": self.stock,
            "available": self.available,
            "isbn": self.isbn,
            "published_year": self.published_year,
            "publisher": self.publisher,
            "description": self.description,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            category=data["category"],
            stock=data["stock"],
            available=data["available"],
            isbn=data.get("isbn"),
            published_year=data.get("published_year"),
            publisher=data.get("publisher"),
            description=data.get("description"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


class Member:
    """A library member identified externally by ``member_code``."""

    def __init__(self, id: Optional[int], name: str, member_code: str,
                 status: str = MEMBER_ACTIVE, email: str | None = None,
                 phone: str | None = None, address: str | None = None,
                 created_at: str | None = None, updated_at: str | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.member_code = member_code.strip()
        self.status = status
        self.email = email
        self.phone = phone
        self.address = address
        self.created_at = created_at
        self.updated_at = updated_at

    @property
    def is_suspended(self) -> bool:
        return self.status == MEMBER_SUSPENDED

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.name} ({self.member_code}, {self.status})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "member_code": self.member_code,
            "status": self.status,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Member":
        return Member(
            id=data.get("id"),
            name=data["name"],
            member_code=data["member_code"],
            status=data.get("status") or MEMBER_ACTIVE,
            email=data.get("email"),
            phone=data.get("phone"),
            address=data.get("address"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


class Borrowing:
    """One member holding one copy of a book between borrow and return."""

    def __init__(self, id: Optional[int], book_id: int, member_id: int,
                 borrow_date: datetime, due_date: datetime,
                 return_date: datetime | None = None, status: str = STATUS_BORROWED,
                 fine: int = 0, notes: str | None = None,
                 book_title: str | None = None, member_name: str | None = None) -> None:
        self.id = id
        self.book_id = book_id
        self.member_id = member_id
        self.borrow_date = parse_datetime(borrow_date)
        self.due_date = parse_datetime(due_date)
        self.return_date = parse_datetime(return_date)
        self.status = status
        self.fine = int(fine or 0)
        self.notes = notes
        self.book_title = book_title
        self.member_name = member_name

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """True when the copy is still out and the due date has passed."""
        if not self.is_active:
            return False
        return (now or utcnow()) > self.due_date

    def display_status(self, now: Optional[datetime] = None) -> str:
        """Status label for listings; a late open borrowing reads as overdue even before the sweep."""
        if self.is_overdue(now):
            return STATUS_OVERDUE
        return self.status

    def __str__(self) -> str:  # pragma: no cover
        return f"Borrowing #{self.id}: book {self.book_id} -> member {self.member_id} ({self.status})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "member_id": self.member_id,
            "borrow_date": to_iso(self.borrow_date),
            "due_date": to_iso(self.due_date),
            "return_date": to_iso(self.return_date),
            "status": self.status,
            "fine": self.fine,
            "notes": self.notes,
            "book_title": self.book_title,
            "member_name": self.member_name,
        }

    @staticmethod
    def from_dict(data: dict) -> "Borrowing":
        return Borrowing(
            id=data.get("id"),
            book_id=data["book_id"],
            member_id=data["member_id"],
            borrow_date=data["borrow_date"],
            due_date=data["due_date"],
            return_date=data.get("return_date"),
            status=data.get("status") or STATUS_BORROWED,
            fine=data.get("fine") or 0,
            notes=data.get("notes"),
            book_title=data.get("book_title"),
            member_name=data.get("member_name"),
        )


class EBook:
    """A digital title. Only the file's location and size are kept; there are no copies to lend."""

    def __init__(self, id: Optional[int], title: str, author: str, category: str,
                 pdf_path: str, file_size: int = 0, isbn: str | None = None,
                 published_year: int | None = None, publisher: str | None = None,
                 description: str | None = None, cover_image: str | None = None,
                 created_at: str | None = None, updated_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.category = category.strip()
        self.pdf_path = pdf_path
        self.file_size = int(file_size or 0)
        self.isbn = isbn
        self.published_year = published_year
        self.publisher = publisher
        self.description = description
        self.cover_image = cover_image
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.title} by {self.author} ({self.file_size} bytes)"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "pdf_path": self.pdf_path,
            "file_size": self.file_size,
            "isbn": self.isbn,
            "published_year": self.published_year,
            "publisher": self.publisher,
            "description": self.description,
            "cover_image": self.cover_image,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "EBook":
        return EBook(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            category=data["category"],
            pdf_path=data["pdf_path"],
            file_size=data.get("file_size") or 0,
            isbn=data.get("isbn"),
            published_year=data.get("published_year"),
            publisher=data.get("publisher"),
            description=data.get("description"),
            cover_image=data.get("cover_image"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
