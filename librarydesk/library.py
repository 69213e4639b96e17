import logging
import os
from datetime import datetime
from typing import Callable, Optional

from config import settings
from librarydesk.activity import ActivityLog
from librarydesk.books import BookService
from librarydesk.borrowing import BorrowingPolicy, BorrowingService
from librarydesk.database import Database
from librarydesk.ebooks import EBookService
from librarydesk.members import MemberService
from librarydesk.models import utcnow
from librarydesk.reports import ReportService

logger = logging.getLogger(__name__)


class Library:
    """Wires the database, the activity log and the services together."""

    def __init__(self, db_file: Optional[str] = None, policy: Optional[BorrowingPolicy] = None,
                 clock: Optional[Callable[[], datetime]] = None, recorder=None) -> None:
        # Explicit argument, then the environment at call time, then settings
        self.db_file = db_file or os.environ.get("LIBRARY_DB_FILE") or settings.database_file
        self.db = Database(self.db_file, timeout=settings.database_timeout)
        self.db.initialize()

        self.policy = policy or BorrowingPolicy.from_settings(settings)
        self.clock = clock or utcnow
        self.activity = ActivityLog(self.db, clock=clock)
        recorder = recorder if recorder is not None else self.activity

        self.books = BookService(self.db, recorder=recorder, clock=clock)
        self.members = MemberService(self.db, recorder=recorder, clock=clock,
                                     max_active_borrowings=self.policy.max_active_borrowings)
        self.borrowings = BorrowingService(self.db, policy=self.policy, recorder=recorder, clock=clock)
        self.ebooks = EBookService(self.db, recorder=recorder, clock=clock)
        self.reports = ReportService(self.db, self.books, self.members, self.borrowings, self.ebooks)
        logger.debug(f"Library initialized with database {self.db_file}")

    def now(self) -> datetime:
        return self.clock()
