"""Library Desk - core application package

This package contains the circulation core and its collaborators:
- Data models (models.py)
- Database layer (database.py)
- Book availability ledger (ledger.py)
- Member eligibility checks (eligibility.py)
- Borrowing lifecycle (borrowing.py)
- Activity log (activity.py)
- Book and member services (books.py, members.py)
- Reports (reports.py)
"""

from librarydesk.library import Library

__all__ = ["Library"]
