import logging
import threading
from datetime import timedelta

import pytest

from librarydesk.borrowing import BorrowingPolicy, BorrowingService, calculate_fine
from librarydesk.eligibility import EligibilityReason
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
from librarydesk.library import Library


def assert_ledger_consistent(lib):
    """stock - available must equal the number of open borrowings for every book."""
    for b in lib.books.list():
        open_count = len([x for x in lib.borrowings.list(book_id=b.id) if x.is_active])
        assert 0 <= b.available <= b.stock
        assert b.stock - b.available == open_count


def test_create_borrowing(lib, clock, book, member):
    due = clock.now + timedelta(days=7)
    borrowing = lib.borrowings.create(book.id, member.id, due, notes="first loan")

    assert borrowing.id is not None
    assert borrowing.status == "borrowed"
    assert borrowing.borrow_date == clock.now
    assert borrowing.due_date == due
    assert borrowing.return_date is None
    assert borrowing.fine == 0
    assert borrowing.notes == "first loan"
    assert lib.books.get(book.id).available == 0
    assert_ledger_consistent(lib)


def test_create_persists_joined_names(lib, clock, book, member):
    borrowing = lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=3))
    stored = lib.borrowings.get(borrowing.id)
    assert stored.book_title == "Dune"
    assert stored.member_name == "Siti Rahma"
    assert stored.due_date == borrowing.due_date


@pytest.mark.parametrize("field", ["book_id", "member_id", "due_date"])
def test_create_requires_all_fields(lib, clock, book, member, field):
    args = {"book_id": book.id, "member_id": member.id, "due_date": clock.now + timedelta(days=1)}
    args[field] = None
    with pytest.raises(InvalidInputError):
        lib.borrowings.create(**args)


def test_create_rejects_unparseable_due_date(lib, book, member):
    with pytest.raises(InvalidInputError):
        lib.borrowings.create(book.id, member.id, "next tuesday")


def test_create_unknown_book(lib, clock, member):
    with pytest.raises(NotFoundError) as exc:
        lib.borrowings.create(999, member.id, clock.now + timedelta(days=1))
    assert exc.value.entity == "Book"


def test_create_unknown_member(lib, clock, book):
    with pytest.raises(NotFoundError) as exc:
        lib.borrowings.create(book.id, 999, clock.now + timedelta(days=1))
    assert exc.value.entity == "Member"
    assert lib.books.get(book.id).available == 1


def test_create_when_no_copy_left(lib, clock, book, member):
    other = lib.members.create("Budi", "M-002")
    lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=1))

    with pytest.raises(BookUnavailableError):
        lib.borrowings.create(book.id, other.id, clock.now + timedelta(days=1))
    assert len(lib.borrowings.list()) == 1
    assert_ledger_consistent(lib)


def test_suspended_member_is_ineligible(lib, clock, book, member):
    lib.members.suspend(member.id)
    with pytest.raises(MemberIneligibleError) as exc:
        lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=1))
    assert exc.value.reason is EligibilityReason.MEMBER_SUSPENDED
    assert lib.books.get(book.id).available == 1


def test_unavailable_book_is_checked_before_eligibility(lib, clock, book, member):
    other = lib.members.create("Budi", "M-002")
    lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=1))
    lib.members.suspend(other.id)
    with pytest.raises(BookUnavailableError):
        lib.borrowings.create(book.id, other.id, clock.now + timedelta(days=1))


def test_member_with_max_active_borrowings_is_rejected(lib, clock, member):
    shelf = lib.books.create("Encyclopedia", "Various", "Reference", stock=6)
    due = clock.now + timedelta(days=5)
    for _ in range(4):
        lib.borrowings.create(shelf.id, member.id, due)

    # 4 open: the 5th is allowed
    lib.borrowings.create(shelf.id, member.id, due)

    # 5 open: the 6th is rejected
    with pytest.raises(MemberIneligibleError) as exc:
        lib.borrowings.create(shelf.id, member.id, due)
    assert exc.value.reason is EligibilityReason.MAX_BORROWINGS_REACHED
    assert lib.books.get(shelf.id).available == 1


def test_due_date_must_be_in_future(lib, clock, book, member):
    with pytest.raises(InvalidDueDateError):
        lib.borrowings.create(book.id, member.id, clock.now)
    with pytest.raises(InvalidDueDateError):
        lib.borrowings.create(book.id, member.id, clock.now - timedelta(hours=1))
    assert lib.books.get(book.id).available == 1


def test_due_date_exactly_max_period_is_allowed(lib, clock, book, member):
    borrowing = lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=14))
    assert borrowing.status == "borrowed"


def test_due_date_beyond_max_period_is_rejected(lib, clock, book, member):
    with pytest.raises(BorrowPeriodTooLongError):
        lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=15))
    assert lib.books.get(book.id).available == 1


def test_max_period_compares_exact_timestamps(lib, clock, book, member):
    # One microsecond past the limit fails even though it is the same calendar day
    with pytest.raises(BorrowPeriodTooLongError):
        lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=14, microseconds=1))


def test_naive_due_date_is_treated_as_utc(lib, clock, book, member):
    naive = (clock.now + timedelta(days=2)).replace(tzinfo=None)
    borrowing = lib.borrowings.create(book.id, member.id, naive)
    assert borrowing.due_date == clock.now + timedelta(days=2)


def test_iso_string_due_date(lib, clock, book, member):
    due = clock.now + timedelta(days=2)
    borrowing = lib.borrowings.create(book.id, member.id, due.isoformat())
    assert borrowing.due_date == due


def test_round_trip_restores_availability(lib, clock, book, member):
    borrowing = lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=7))
    clock.advance(days=3)
    returned = lib.borrowings.return_book(borrowing.id)

    assert returned.status == "returned"
    assert returned.return_date == clock.now
    assert returned.fine == 0
    assert lib.books.get(book.id).available == 1
    stored = lib.borrowings.get(borrowing.id)
    assert stored.status == "returned"
    assert stored.return_date is not None
    assert_ledger_consistent(lib)


def test_second_return_fails_without_double_increment(lib, clock, member):
    shelf = lib.books.create("Laskar Pelangi", "Andrea Hirata", "Novel", stock=2)
    first = lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(days=7))
    lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(days=7))
    assert lib.books.get(shelf.id).available == 0

    lib.borrowings.return_book(first.id)
    with pytest.raises(AlreadyReturnedError):
        lib.borrowings.return_book(first.id)
    assert lib.books.get(shelf.id).available == 1
    assert_ledger_consistent(lib)


def test_return_unknown_borrowing(lib):
    with pytest.raises(NotFoundError):
        lib.borrowings.return_book(12345)


def test_return_exactly_at_due_date_has_no_fine(lib, clock, book, member):
    due = clock.now + timedelta(days=7)
    borrowing = lib.borrowings.create(book.id, member.id, due)
    clock.set(due)
    assert lib.borrowings.return_book(borrowing.id).fine == 0


def test_return_one_millisecond_late_costs_one_day(lib, clock, book, member):
    due = clock.now + timedelta(days=7)
    borrowing = lib.borrowings.create(book.id, member.id, due)
    clock.set(due + timedelta(milliseconds=1))
    returned = lib.borrowings.return_book(borrowing.id)
    assert returned.fine == 1000
    assert lib.borrowings.get(borrowing.id).fine == 1000


def test_return_three_and_a_half_days_late(lib, clock, book, member):
    due = clock.now + timedelta(days=1)
    borrowing = lib.borrowings.create(book.id, member.id, due)
    clock.set(due + timedelta(days=3, hours=12))
    assert lib.borrowings.return_book(borrowing.id).fine == 4000


@pytest.mark.parametrize("late, expected", [
    (timedelta(0), 0),
    (timedelta(milliseconds=-1), 0),
    (timedelta(milliseconds=1), 1000),
    (timedelta(days=1), 1000),
    (timedelta(days=1, seconds=1), 2000),
    (timedelta(days=10), 10000),
])
def test_calculate_fine(clock, late, expected):
    due = clock.now
    assert calculate_fine(due, due + late, 1000) == expected


def test_custom_policy(db_file, clock):
    policy = BorrowingPolicy(max_borrow_days=7, fine_per_day=500, max_active_borrowings=1)
    lib = Library(db_file=db_file, policy=policy, clock=clock)
    book = lib.books.create("Bumi Manusia", "Pramoedya Ananta Toer", "Novel", stock=3)
    member = lib.members.create("Ayu", "M-100")

    with pytest.raises(BorrowPeriodTooLongError):
        lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=8))
    borrowing = lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=7))
    with pytest.raises(MemberIneligibleError):
        lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=7))

    clock.advance(days=9)
    assert lib.borrowings.return_book(borrowing.id).fine == 1000


def test_overdue_sweep(lib, clock, member):
    shelf = lib.books.create("Negeri 5 Menara", "Ahmad Fuadi", "Novel", stock=3)
    late = lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(days=1))
    on_time = lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(days=10))
    clock.advance(days=2)

    assert lib.borrowings.update_overdue_status() == 1
    assert lib.borrowings.get(late.id).status == "overdue"
    assert lib.borrowings.get(on_time.id).status == "borrowed"
    # Advisory only: availability is untouched
    assert lib.books.get(shelf.id).available == 1
    assert_ledger_consistent(lib)
    assert lib.borrowings.update_overdue_status() == 0


def test_return_from_overdue(lib, clock, book, member):
    borrowing = lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=1))
    clock.advance(days=2)
    lib.borrowings.update_overdue_status()

    returned = lib.borrowings.return_book(borrowing.id)
    assert returned.status == "returned"
    assert returned.fine == 1000
    assert lib.books.get(book.id).available == 1


def test_return_computes_fine_without_sweep(lib, clock, book, member):
    borrowing = lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=1))
    clock.advance(days=3)
    assert lib.borrowings.get(borrowing.id).status == "borrowed"
    assert lib.borrowings.return_book(borrowing.id).fine == 2000


def test_overdue_borrowings_count_towards_limit(lib, clock, member):
    shelf = lib.books.create("Atlas", "Various", "Reference", stock=6)
    for _ in range(5):
        lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(hours=1))
    clock.advance(hours=2)
    lib.borrowings.update_overdue_status()
    with pytest.raises(MemberIneligibleError):
        lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(days=1))


def test_queries(lib, clock, member):
    shelf = lib.books.create("Ronggeng Dukuh Paruk", "Ahmad Tohari", "Novel", stock=3)
    other = lib.members.create("Budi", "M-002")
    first = lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(days=1))
    lib.borrowings.create(shelf.id, other.id, clock.now + timedelta(days=5))
    lib.borrowings.return_book(first.id)
    lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(days=1))
    clock.advance(days=2)

    assert len(lib.borrowings.list()) == 3
    assert len(lib.borrowings.list(status="returned")) == 1
    assert len(lib.borrowings.list(member_id=member.id)) == 2
    assert len(lib.borrowings.list_active()) == 2
    assert [b.member_id for b in lib.borrowings.list_overdue()] == [member.id]
    assert len(lib.borrowings.member_history(other.id)) == 1
    with pytest.raises(NotFoundError):
        lib.borrowings.member_history(999)

    stats = lib.borrowings.stats()
    assert stats == {"total": 3, "active": 2, "overdue": 1, "returned": 1, "total_fines": 0}


def test_activity_is_recorded(lib, clock, book, member):
    borrowing = lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=1),
                                      admin_name="librarian")
    clock.advance(days=3)
    lib.borrowings.return_book(borrowing.id, admin_name="librarian")

    entries = lib.activity.list(entity_type="borrowing")
    assert [e["action"] for e in entries] == ["return", "borrow"]
    assert entries[0]["details"] == "Fine: 2000 IDR"
    assert entries[1]["details"] == "Due: 2025-03-11"
    assert entries[1]["entity_name"] == "Dune - Siti Rahma"
    assert all(e["admin_name"] == "librarian" for e in entries)


def test_failing_recorder_does_not_undo_borrowing(db_file, clock, caplog):
    class BrokenRecorder:
        def record(self, **entry):
            raise RuntimeError("audit store offline")

    lib = Library(db_file=db_file, clock=clock, recorder=BrokenRecorder())
    book = lib.books.create("Dune", "Frank Herbert", "Science Fiction", stock=1)
    member = lib.members.create("Siti Rahma", "M-001")

    with caplog.at_level(logging.ERROR):
        borrowing = lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=1))
        returned = lib.borrowings.return_book(borrowing.id)

    assert returned.status == "returned"
    assert lib.books.get(book.id).available == 1
    assert "Failed to record borrow activity" in caplog.text


def test_failed_create_rolls_back_the_borrowing_row(lib, clock, book, member, monkeypatch):
    def broken_decrement(self, book_id):
        raise RuntimeError("disk full")

    monkeypatch.setattr("librarydesk.borrowing.AvailabilityLedger.decrement", broken_decrement)
    with pytest.raises(RuntimeError):
        lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=1))
    assert lib.borrowings.list() == []
    assert lib.books.get(book.id).available == 1


def test_service_works_without_recorder(lib, clock, book, member):
    service = BorrowingService(lib.db, clock=clock)
    borrowing = service.create(book.id, member.id, clock.now + timedelta(days=1))
    service.return_book(borrowing.id)
    assert lib.activity.list(entity_type="borrowing") == []


def test_concurrent_borrows_of_last_copy(lib, clock, book, member):
    other = lib.members.create("Budi", "M-002")
    barrier = threading.Barrier(2)
    results = []
    lock = threading.Lock()

    def borrow(member_id):
        barrier.wait()
        try:
            lib.borrowings.create(book.id, member_id, clock.now + timedelta(days=1))
            outcome = "ok"
        except (BookUnavailableError, ConcurrencyConflictError) as exc:
            outcome = type(exc).__name__
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=borrow, args=(m,)) for m in (member.id, other.id)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert len(results) == 2
    assert results.count("ok") == 1
    assert set(results) - {"ok"} <= {"BookUnavailableError", "ConcurrencyConflictError"}
    assert lib.books.get(book.id).available == 0
    assert len(lib.borrowings.list()) == 1


def test_create_rejects_non_date_due_date(lib, book, member):
    with pytest.raises(InvalidInputError):
        lib.borrowings.create(book.id, member.id, 12345)
    assert lib.books.get(book.id).available == 1
