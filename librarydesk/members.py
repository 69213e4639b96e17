import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from librarydesk.activity import safe_record
from librarydesk.database import Database
from librarydesk.eligibility import DEFAULT_MAX_ACTIVE_BORROWINGS, EligibilityChecker, EligibilityResult
from librarydesk.errors import ActiveBorrowingsError, DuplicateError, InvalidInputError, NotFoundError
from librarydesk.models import MEMBER_ACTIVE, MEMBER_STATUSES, MEMBER_SUSPENDED, Member, utcnow
from librarydesk.repositories import BorrowingRepository, MemberRepository
from librarydesk.validators import TextValidator

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "email", "phone", "address", "status")


class MemberService:
    def __init__(self, db: Database, recorder=None, clock: Optional[Callable[[], datetime]] = None,
                 max_active_borrowings: int = DEFAULT_MAX_ACTIVE_BORROWINGS) -> None:
        self.db = db
        self.recorder = recorder
        self.clock = clock or utcnow
        self.max_active_borrowings = max_active_borrowings

    @staticmethod
    def _clean_email(email: Optional[str]) -> Optional[str]:
        email = TextValidator.clean(email)
        if email is None:
            return None
        if not TextValidator.validate_email(email):
            raise InvalidInputError(f"Invalid email address: {email}")
        return email.lower()

    def _record(self, action: str, member: Member, details: str, admin_name: str) -> None:
        safe_record(
            self.recorder,
            action=action,
            entity_type="member",
            entity_id=member.id,
            entity_name=member.name,
            details=details,
            admin_name=admin_name,
        )

    # ------------------------- Core operations ------------------------- #
    def create(self, name: str, member_code: str, email: Optional[str] = None,
               phone: Optional[str] = None, address: Optional[str] = None,
               admin_name: str = "system") -> Member:
        """Register a member. The member code must be unique; new members start active."""
        name, member_code = TextValidator.clean(name), TextValidator.clean(member_code)
        if TextValidator.is_blank(name) or TextValidator.is_blank(member_code):
            raise InvalidInputError("Name and member ID are required")
        email = self._clean_email(email)

        member = Member(
            id=None,
            name=name,
            member_code=member_code,
            status=MEMBER_ACTIVE,
            email=email,
            phone=TextValidator.clean(phone),
            address=TextValidator.clean(address),
        )
        with self.db.transaction() as conn:
            members = MemberRepository(conn)
            if members.find_by_code(member.member_code):
                raise DuplicateError("A member with this ID already exists")
            if email and members.find_by_email(email):
                raise DuplicateError("A member with this email already exists")
            members.insert(member, self.clock())

        logger.info(f"Member {member.id} created: {member.member_code}")
        self._record("create", member, f"Member ID: {member.member_code}", admin_name)
        return member

    def get(self, member_id: int) -> Member:
        with self.db.connection() as conn:
            member = MemberRepository(conn).find_by_id(member_id)
        if member is None:
            raise NotFoundError("Member", member_id)
        return member

    def get_by_code(self, member_code: str) -> Member:
        with self.db.connection() as conn:
            member = MemberRepository(conn).find_by_code(member_code.strip())
        if member is None:
            raise NotFoundError("Member", member_code)
        return member

    def list(self, limit: int = 100, offset: int = 0, status: Optional[str] = None) -> List[Member]:
        with self.db.connection() as conn:
            return MemberRepository(conn).find_all(limit, offset, status)

    def search(self, query: str) -> List[Member]:
        """Match name, member code or email."""
        with self.db.connection() as conn:
            return MemberRepository(conn).search(query.strip())

    def update(self, member_id: int, admin_name: str = "system", **changes: Any) -> Member:
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidInputError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        fields = {name: value for name, value in changes.items() if value is not None}
        for name in ("name", "phone", "address"):
            if name in fields:
                fields[name] = TextValidator.clean(fields[name])
        if "name" in fields and TextValidator.is_blank(fields["name"]):
            raise InvalidInputError("Name cannot be empty")
        if "status" in fields and fields["status"] not in MEMBER_STATUSES:
            raise InvalidInputError(f"Status must be one of: {', '.join(MEMBER_STATUSES)}")
        if "email" in fields:
            fields["email"] = self._clean_email(fields["email"])

        with self.db.transaction() as conn:
            members = MemberRepository(conn)
            existing = members.find_by_id(member_id)
            if existing is None:
                raise NotFoundError("Member", member_id)
            if fields.get("email") and fields["email"] != existing.email:
                other = members.find_by_email(fields["email"])
                if other and other.id != member_id:
                    raise DuplicateError("A member with this email already exists")
            members.update(member_id, fields, self.clock())
            updated = members.find_by_id(member_id)

        self._record(
            "update", updated,
            f"Member ID: {updated.member_code}, Status: {updated.status}", admin_name,
        )
        return updated

    def _set_status(self, member_id: int, status: str, admin_name: str) -> Member:
        with self.db.transaction() as conn:
            members = MemberRepository(conn)
            if members.find_by_id(member_id) is None:
                raise NotFoundError("Member", member_id)
            members.update(member_id, {"status": status}, self.clock())
            updated = members.find_by_id(member_id)
        verb = "suspended" if status == MEMBER_SUSPENDED else "activated"
        logger.info(f"Member {member_id} {verb}")
        self._record("update", updated, f"Member {verb}: {updated.member_code}", admin_name)
        return updated

    def suspend(self, member_id: int, admin_name: str = "system") -> Member:
        return self._set_status(member_id, MEMBER_SUSPENDED, admin_name)

    def activate(self, member_id: int, admin_name: str = "system") -> Member:
        return self._set_status(member_id, MEMBER_ACTIVE, admin_name)

    def delete(self, member_id: int, admin_name: str = "system") -> None:
        """Remove a member who holds no borrowed books."""
        with self.db.transaction() as conn:
            members = MemberRepository(conn)
            member = members.find_by_id(member_id)
            if member is None:
                raise NotFoundError("Member", member_id)
            active = BorrowingRepository(conn).count_active_for_member(member_id)
            if active > 0:
                raise ActiveBorrowingsError("member", active)
            members.delete(member_id)

        logger.info(f"Member {member_id} deleted")
        self._record("delete", member, f"Member ID: {member.member_code}", admin_name)

    def check_eligibility(self, member_id: int) -> EligibilityResult:
        with self.db.connection() as conn:
            return EligibilityChecker(conn, self.max_active_borrowings).check(member_id)

    def stats(self) -> Dict[str, int]:
        with self.db.connection() as conn:
            counts = MemberRepository(conn).count_by_status()
        return {
            "total_members": sum(counts.values()),
            "active_members": counts.get(MEMBER_ACTIVE, 0),
            "suspended_members": counts.get(MEMBER_SUSPENDED, 0),
        }
