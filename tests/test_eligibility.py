from datetime import timedelta

import pytest

from librarydesk.eligibility import EligibilityChecker, EligibilityReason


@pytest.fixture
def shelf(lib):
    return lib.books.create("Kamus Besar", "Various", "Reference", stock=10)


def _borrow(lib, clock, shelf, member, times):
    for _ in range(times):
        lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(days=3))


def test_new_member_can_borrow(lib, member):
    result = lib.members.check_eligibility(member.id)
    assert result.can_borrow is True
    assert result.reason is None
    assert result.active_borrowings == 0


def test_unknown_member(lib):
    result = lib.members.check_eligibility(999)
    assert result.can_borrow is False
    assert result.reason is EligibilityReason.MEMBER_NOT_FOUND


def test_suspended_member(lib, member):
    lib.members.suspend(member.id)
    result = lib.members.check_eligibility(member.id)
    assert result.can_borrow is False
    assert result.reason is EligibilityReason.MEMBER_SUSPENDED
    assert result.to_dict()["message"] == "Member is suspended"


def test_four_active_borrowings_still_eligible(lib, clock, shelf, member):
    _borrow(lib, clock, shelf, member, 4)
    result = lib.members.check_eligibility(member.id)
    assert result.can_borrow is True
    assert result.active_borrowings == 4


def test_five_active_borrowings_reaches_limit(lib, clock, shelf, member):
    _borrow(lib, clock, shelf, member, 5)
    result = lib.members.check_eligibility(member.id)
    assert result.can_borrow is False
    assert result.reason is EligibilityReason.MAX_BORROWINGS_REACHED
    assert result.to_dict() == {
        "can_borrow": False,
        "reason": "max_borrowings_reached",
        "message": "Maximum borrowings reached",
        "active_borrowings": 5,
    }


def test_returned_borrowings_do_not_count(lib, clock, shelf, member):
    _borrow(lib, clock, shelf, member, 5)
    first = lib.borrowings.list(member_id=member.id)[-1]
    lib.borrowings.return_book(first.id)
    assert lib.members.check_eligibility(member.id).can_borrow is True


def test_suspension_is_reported_before_limit(lib, clock, shelf, member):
    _borrow(lib, clock, shelf, member, 5)
    lib.members.suspend(member.id)
    assert lib.members.check_eligibility(member.id).reason is EligibilityReason.MEMBER_SUSPENDED


def test_custom_limit(lib, clock, shelf, member):
    _borrow(lib, clock, shelf, member, 2)
    with lib.db.connection() as conn:
        result = EligibilityChecker(conn, max_active_borrowings=2).check(member.id)
    assert result.reason is EligibilityReason.MAX_BORROWINGS_REACHED


def test_check_is_read_only(lib, member):
    before = lib.members.get(member.id)
    lib.members.check_eligibility(member.id)
    assert lib.members.get(member.id).to_dict() == before.to_dict()
