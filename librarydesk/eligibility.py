from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from librarydesk.repositories import BorrowingRepository, MemberRepository

DEFAULT_MAX_ACTIVE_BORROWINGS = 5


class EligibilityReason(str, Enum):
    MEMBER_NOT_FOUND = "member_not_found"
    MEMBER_SUSPENDED = "member_suspended"
    MAX_BORROWINGS_REACHED = "max_borrowings_reached"

    @property
    def message(self) -> str:
        return {
            EligibilityReason.MEMBER_NOT_FOUND: "Member not found",
            EligibilityReason.MEMBER_SUSPENDED: "Member is suspended",
            EligibilityReason.MAX_BORROWINGS_REACHED: "Maximum borrowings reached",
        }[self]


@dataclass(frozen=True)
class EligibilityResult:
    can_borrow: bool
    reason: Optional[EligibilityReason] = None
    active_borrowings: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "can_borrow": self.can_borrow,
            "reason": self.reason.value if self.reason else None,
            "message": self.reason.message if self.reason else None,
            "active_borrowings": self.active_borrowings,
        }


class EligibilityChecker:
    """Decides whether a member may open a new borrowing.

    Rules run in order (existence, suspension, active borrowing count) and the
    first failing rule is the reason. Read only.
    """

    def __init__(self, conn: sqlite3.Connection,
                 max_active_borrowings: int = DEFAULT_MAX_ACTIVE_BORROWINGS) -> None:
        self.members = MemberRepository(conn)
        self.borrowings = BorrowingRepository(conn)
        self.max_active_borrowings = max_active_borrowings

    def check(self, member_id: int) -> EligibilityResult:
        member = self.members.find_by_id(member_id)
        if member is None:
            return EligibilityResult(False, EligibilityReason.MEMBER_NOT_FOUND)
        if member.is_suspended:
            return EligibilityResult(False, EligibilityReason.MEMBER_SUSPENDED)
        active = self.borrowings.count_active_for_member(member_id)
        if active >= self.max_active_borrowings:
            return EligibilityResult(False, EligibilityReason.MAX_BORROWINGS_REACHED, active)
        return EligibilityResult(True, None, active)
