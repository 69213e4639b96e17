"""Exception hierarchy shared by the services, the API and the CLI.

Each error carries the HTTP status code and a short machine readable code so
that ``api.py`` can translate it without a lookup table.
"""

from __future__ import annotations

from typing import Optional


class LibraryError(Exception):
    status_code = 400
    code = "library_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class InvalidInputError(LibraryError, ValueError):
    code = "invalid_input"


class InvalidDueDateError(InvalidInputError):
    code = "invalid_due_date"


class BorrowPeriodTooLongError(InvalidInputError):
    code = "borrow_period_too_long"

    def __init__(self, max_days: int) -> None:
        super().__init__(f"Maximum borrowing period is {max_days} days")
        self.max_days = max_days


class NotFoundError(LibraryError, LookupError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: Optional[object] = None) -> None:
        if entity_id is None:
            message = f"{entity} not found"
        else:
            message = f"{entity} with ID {entity_id} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class BookUnavailableError(LibraryError):
    code = "book_unavailable"

    def __init__(self, book_id: object) -> None:
        super().__init__("Book is not available for borrowing")
        self.book_id = book_id


class MemberIneligibleError(LibraryError):
    code = "member_ineligible"

    def __init__(self, reason) -> None:
        super().__init__(f"Cannot borrow: {reason.message}")
        self.reason = reason

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["reason"] = self.reason.value
        return payload


class AlreadyReturnedError(LibraryError):
    status_code = 409
    code = "already_returned"

    def __init__(self, borrowing_id: object) -> None:
        super().__init__("Book has already been returned")
        self.borrowing_id = borrowing_id


class ConcurrencyConflictError(LibraryError):
    """Another operation changed the same record first; retry the whole operation."""

    status_code = 409
    code = "concurrency_conflict"


class DuplicateError(LibraryError):
    status_code = 409
    code = "duplicate"


class ActiveBorrowingsError(LibraryError):
    code = "active_borrowings"

    def __init__(self, entity: str, count: int) -> None:
        super().__init__(
            f"Cannot delete {entity} with active borrowings. Return all books first."
        )
        self.entity = entity
        self.count = count
