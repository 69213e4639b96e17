from typing import Any, Dict, List

from librarydesk.books import BookService
from librarydesk.borrowing import BorrowingService
from librarydesk.database import Database
from librarydesk.ebooks import EBookService
from librarydesk.members import MemberService
from librarydesk.repositories import BorrowingRepository


class ReportService:
    """Read-only summaries for the dashboard."""

    def __init__(self, db: Database, books: BookService, members: MemberService,
                 borrowings: BorrowingService, ebooks: EBookService) -> None:
        self.db = db
        self.books = books
        self.members = members
        self.borrowings = borrowings
        self.ebooks = ebooks

    def overall(self) -> Dict[str, Any]:
        return {
            "books": self.books.stats(),
            "ebooks": self.ebooks.stats(),
            "members": self.members.stats(),
            "borrowings": self.borrowings.stats(),
        }

    def popular_books(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Books ordered by how many times they have been borrowed."""
        with self.db.connection() as conn:
            return BorrowingRepository(conn).borrow_counts_by_book(limit)

    def active_members(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Members ordered by how many books they currently hold."""
        with self.db.connection() as conn:
            return BorrowingRepository(conn).active_counts_by_member(limit)
