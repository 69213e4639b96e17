import re
from datetime import datetime, timedelta, timezone

import pytest

from librarydesk.borrowing import BorrowingPolicy
from librarydesk.library import Library

START = datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    """Controllable time source for the services."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now

    def set(self, when: datetime) -> datetime:
        self.now = when
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    safe_name = re.sub(r"[^A-Za-z0-9_.-]", "_", request.node.name)[:60]
    return str(tmp_path / f"test_{safe_name}.db")


@pytest.fixture
def lib(db_file, clock):
    return Library(db_file=db_file, policy=BorrowingPolicy(), clock=clock)


@pytest.fixture
def book(lib):
    return lib.books.create("Dune", "Frank Herbert", "Science Fiction", stock=1)


@pytest.fixture
def member(lib):
    return lib.members.create("Siti Rahma", "M-001", email="siti@example.com")
