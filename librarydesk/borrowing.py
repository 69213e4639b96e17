"""Borrowing lifecycle: create, return, fines and the overdue sweep.

A borrowing starts ``borrowed`` and ends ``returned``, exactly once. The
sweep may relabel an open borrowing ``overdue`` for reporting; that label
does not block anything and a return from it takes the same path.

Creating a borrowing and taking the copy out of the ledger happen in one
transaction, as do closing it and putting the copy back. Validation and
business rules are all checked before the first write.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from librarydesk.activity import safe_record
from librarydesk.database import Database
from librarydesk.eligibility import DEFAULT_MAX_ACTIVE_BORROWINGS, EligibilityChecker
from librarydesk.errors import (
    AlreadyReturnedError,
    BookUnavailableError,
    BorrowPeriodTooLongError,
    ConcurrencyConflictError,
    InvalidDueDateError,
    InvalidInputError,
    MemberIneligibleError,
    NotFoundError,
)
from librarydesk.ledger import AvailabilityLedger
from librarydesk.models import (
    STATUS_BORROWED,
    STATUS_RETURNED,
    Borrowing,
    parse_datetime,
    utcnow,
)
from librarydesk.repositories import BookRepository, BorrowingRepository, MemberRepository

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class BorrowingPolicy:
    """Circulation limits. Fines are whole currency units."""

    max_borrow_days: int = 14
    fine_per_day: int = 1000
    max_active_borrowings: int = DEFAULT_MAX_ACTIVE_BORROWINGS
    currency: str = "IDR"

    @classmethod
    def from_settings(cls, settings) -> "BorrowingPolicy":
        return cls(
            max_borrow_days=settings.max_borrow_days,
            fine_per_day=settings.fine_per_day,
            max_active_borrowings=settings.max_active_borrowings,
            currency=settings.fine_currency,
        )


def calculate_fine(due_date: datetime, returned_at: datetime, fine_per_day: int) -> int:
    """Fine for returning at ``returned_at``; any started day late counts as a full day."""
    if returned_at <= due_date:
        return 0
    late = returned_at - due_date
    days_late = -(-late // ONE_DAY)
    return days_late * fine_per_day


class BorrowingService:
    def __init__(self, db: Database, policy: Optional[BorrowingPolicy] = None, recorder=None,
                 clock: Optional[Callable[[], datetime]] = None) -> None:
        self.db = db
        self.policy = policy or BorrowingPolicy()
        self.recorder = recorder
        self.clock = clock or utcnow

    # ------------------------- Lifecycle ------------------------- #
    def create(self, book_id: int, member_id: int, due_date: Union[datetime, str, None],
               notes: Optional[str] = None, admin_name: str = "system") -> Borrowing:
        """Lend one copy of a book to a member until ``due_date``."""
        if not book_id or not member_id or not due_date:
            raise InvalidInputError("Book ID, member ID, and due date are required")
        try:
            due = parse_datetime(due_date)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"Invalid due date: {due_date}") from exc

        with self.db.transaction() as conn:
            now = parse_datetime(self.clock())
            book = BookRepository(conn).find_by_id(book_id)
            if book is None:
                raise NotFoundError("Book", book_id)
            member = MemberRepository(conn).find_by_id(member_id)
            if member is None:
                raise NotFoundError("Member", member_id)
            if book.available <= 0:
                raise BookUnavailableError(book_id)

            eligibility = EligibilityChecker(conn, self.policy.max_active_borrowings).check(member_id)
            if not eligibility.can_borrow:
                raise MemberIneligibleError(eligibility.reason)

            if due <= now:
                raise InvalidDueDateError("Due date must be in the future")
            # Exact timestamps, not calendar days
            if due > now + timedelta(days=self.policy.max_borrow_days):
                raise BorrowPeriodTooLongError(self.policy.max_borrow_days)

            borrowing = BorrowingRepository(conn).insert(Borrowing(
                id=None,
                book_id=book_id,
                member_id=member_id,
                borrow_date=now,
                due_date=due,
                status=STATUS_BORROWED,
                fine=0,
                notes=notes,
                book_title=book.title,
                member_name=member.name,
            ))
            try:
                AvailabilityLedger(conn).decrement(book_id)
            except BookUnavailableError as exc:
                raise ConcurrencyConflictError(
                    f"Last copy of book {book_id} was taken concurrently, please retry."
                ) from exc

        logger.info(
            f"Borrowing {borrowing.id} created: book {book_id} -> member {member_id}, due {due.date()}"
        )
        safe_record(
            self.recorder,
            action="borrow",
            entity_type="borrowing",
            entity_id=borrowing.id,
            entity_name=f"{book.title} - {member.name}",
            details=f"Due: {due.date().isoformat()}",
            admin_name=admin_name,
        )
        return borrowing

    def return_book(self, borrowing_id: int, admin_name: str = "system") -> Borrowing:
        """Close a borrowing, compute its fine and put the copy back."""
        with self.db.transaction() as conn:
            now = parse_datetime(self.clock())
            borrowings = BorrowingRepository(conn)
            borrowing = borrowings.find_by_id(borrowing_id)
            if borrowing is None:
                raise NotFoundError("Borrowing", borrowing_id)
            if borrowing.status == STATUS_RETURNED:
                raise AlreadyReturnedError(borrowing_id)

            fine = calculate_fine(borrowing.due_date, now, self.policy.fine_per_day)
            if not borrowings.mark_returned(borrowing_id, now, fine):
                raise AlreadyReturnedError(borrowing_id)
            AvailabilityLedger(conn).increment(borrowing.book_id)

        borrowing.return_date = now
        borrowing.status = STATUS_RETURNED
        borrowing.fine = fine
        logger.info(f"Borrowing {borrowing_id} returned with fine {fine} {self.policy.currency}")
        safe_record(
            self.recorder,
            action="return",
            entity_type="borrowing",
            entity_id=borrowing.id,
            entity_name=f"{borrowing.book_title} - {borrowing.member_name}",
            details=f"Fine: {fine} {self.policy.currency}" if fine > 0 else "No fine",
            admin_name=admin_name,
        )
        return borrowing

    def update_overdue_status(self) -> int:
        """Label open borrowings past their due date as overdue. Returns how many changed."""
        with self.db.transaction() as conn:
            updated = BorrowingRepository(conn).mark_overdue(parse_datetime(self.clock()))
        if updated:
            logger.info(f"Marked {updated} borrowings as overdue")
        return updated

    # ------------------------- Queries ------------------------- #
    def get(self, borrowing_id: int) -> Borrowing:
        with self.db.connection() as conn:
            borrowing = BorrowingRepository(conn).find_by_id(borrowing_id)
        if borrowing is None:
            raise NotFoundError("Borrowing", borrowing_id)
        return borrowing

    def list(self, status: Optional[str] = None, member_id: Optional[int] = None,
             book_id: Optional[int] = None, limit: int = 100, offset: int = 0) -> List[Borrowing]:
        with self.db.connection() as conn:
            return BorrowingRepository(conn).find_all(status, member_id, book_id, limit, offset)

    def list_active(self) -> List[Borrowing]:
        with self.db.connection() as conn:
            return BorrowingRepository(conn).find_active()

    def list_overdue(self) -> List[Borrowing]:
        with self.db.connection() as conn:
            return BorrowingRepository(conn).find_overdue(parse_datetime(self.clock()))

    def member_history(self, member_id: int) -> List[Borrowing]:
        with self.db.connection() as conn:
            if MemberRepository(conn).find_by_id(member_id) is None:
                raise NotFoundError("Member", member_id)
            return BorrowingRepository(conn).find_by_member(member_id)

    def stats(self) -> Dict[str, Any]:
        with self.db.connection() as conn:
            return BorrowingRepository(conn).stats(parse_datetime(self.clock()))
