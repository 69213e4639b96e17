import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from librarydesk.database import Database
from librarydesk.errors import InvalidInputError
from librarydesk.models import to_iso, utcnow

logger = logging.getLogger(__name__)

ACTIONS = ("create", "update", "delete", "borrow", "return")
ENTITY_TYPES = ("book", "ebook", "member", "borrowing")


class ActivityLog:
    """Audit trail of who did what. Display only; nothing depends on it succeeding."""

    def __init__(self, db: Database, clock: Optional[Callable] = None) -> None:
        self.db = db
        self.clock = clock or utcnow

    def record(self, action: str, entity_type: str, entity_id: Any, entity_name: str,
               details: Optional[str] = None, admin_name: str = "system") -> int:
        if action not in ACTIONS:
            raise InvalidInputError(f"Unknown activity action: {action}")
        with self.db.connection() as conn:
            cursor = conn.execute("""
                INSERT INTO activity_logs (admin_name, action, entity_type, entity_id, entity_name, details, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (admin_name, action, entity_type, str(entity_id), entity_name, details, to_iso(self.clock())))
            return cursor.lastrowid

    def list(self, limit: int = 50, action: Optional[str] = None, entity_type: Optional[str] = None,
             admin_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Newest entries first, optionally filtered."""
        clauses = []
        params: List[Any] = []
        if action:
            clauses.append("action = ?")
            params.append(action)
        if entity_type:
            clauses.append("entity_type = ?")
            params.append(entity_type)
        if admin_name:
            clauses.append("admin_name = ?")
            params.append(admin_name)
        sql = "SELECT * FROM activity_logs"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)
        with self.db.connection() as conn:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]

    def delete_older_than(self, days: int = 90) -> int:
        cutoff = self.clock() - timedelta(days=days)
        with self.db.connection() as conn:
            deleted = conn.execute("DELETE FROM activity_logs WHERE timestamp < ?", (to_iso(cutoff),)).rowcount
        logger.info(f"Deleted {deleted} activity log entries older than {days} days")
        return deleted


def safe_record(recorder, **entry) -> None:
    """Send an entry to the recorder; a failing recorder is logged, never raised."""
    if recorder is None:
        return
    try:
        recorder.record(**entry)
    except Exception:
        logger.exception(
            f"Failed to record {entry.get('action')} activity for "
            f"{entry.get('entity_type')} {entry.get('entity_id')}"
        )
