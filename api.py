import logging
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from config import settings
from librarydesk.errors import LibraryError
from librarydesk.library import Library
from librarydesk.models import BORROWING_STATUSES, MEMBER_STATUSES, utcnow

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=f"{settings.app_name} API", version=settings.app_version, debug=settings.debug)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_library() -> Library:
    """Process-wide Library; tests replace it through ``app.dependency_overrides``."""
    return Library()


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    if exc.status_code >= 409:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency validating the API key."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(
        status_code=403,
        detail="Could not validate credentials",
    )


def get_admin_name(x_admin_name: Optional[str] = Header(None)) -> str:
    """Acting admin, used only to attribute activity log entries."""
    return (x_admin_name or "admin").strip() or "admin"


def _page_size(limit: Optional[int]) -> int:
    if not limit:
        return settings.default_page_size
    return min(limit, settings.max_page_size)


# --- Models ---
class BookModel(BaseModel):
    id: int
    title: str
    author: str
    category: str
    stock: int
    available: int
    isbn: Optional[str] = None
    published_year: Optional[int] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class BookCreateModel(BaseModel):
    title: str
    author: str
    category: str
    stock: int = Field(1, ge=0)
    isbn: Optional[str] = None
    published_year: Optional[int] = None
    publisher: Optional[str] = None
    description: Optional[str] = None


class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    isbn: Optional[str] = None
    published_year: Optional[int] = None
    publisher: Optional[str] = None
    description: Optional[str] = None


class EBookModel(BaseModel):
    id: int
    title: str
    author: str
    category: str
    pdf_path: str
    file_size: int
    isbn: Optional[str] = None
    published_year: Optional[int] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    cover_image: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class EBookCreateModel(BaseModel):
    title: str
    author: str
    category: str
    pdf_path: str
    file_size: int = Field(0, ge=0)
    isbn: Optional[str] = None
    published_year: Optional[int] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    cover_image: Optional[str] = None


class EBookUpdateModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    pdf_path: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)
    isbn: Optional[str] = None
    published_year: Optional[int] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    cover_image: Optional[str] = None


class MemberModel(BaseModel):
    id: int
    name: str
    member_code: str
    status: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class MemberCreateModel(BaseModel):
    name: str
    member_code: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class MemberUpdateModel(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    status: Optional[str] = None


class EligibilityModel(BaseModel):
    can_borrow: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    active_borrowings: Optional[int] = None


class BorrowingModel(BaseModel):
    id: int
    book_id: int
    member_id: int
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: str
    fine: int
    notes: Optional[str] = None
    book_title: Optional[str] = None
    member_name: Optional[str] = None


class BorrowingCreateModel(BaseModel):
    book_id: int
    member_id: int
    due_date: Optional[datetime] = None
    notes: Optional[str] = None


class SweepResultModel(BaseModel):
    updated: int


class ActivityLogModel(BaseModel):
    id: int
    admin_name: str
    action: str
    entity_type: str
    entity_id: str
    entity_name: str
    details: Optional[str] = None
    timestamp: str


class StatsModel(BaseModel):
    books: Dict[str, Any]
    ebooks: Dict[str, Any]
    members: Dict[str, Any]
    borrowings: Dict[str, Any]


# --- Health check ---
@app.get("/health")
def health(library: Library = Depends(get_library)):
    """Lightweight health check with a quick database round trip."""
    db_ok = True
    try:
        with library.db.connection() as conn:
            conn.execute("SELECT 1")
    except Exception:
        logger.exception("Health check database query failed")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": utcnow().isoformat(),
        "db": db_ok,
        "version": settings.app_version,
    }


# --- Books ---
@app.get("/books", response_model=List[BookModel])
def list_books(q: Optional[str] = None, limit: Optional[int] = Query(None, ge=1), offset: int = Query(0, ge=0),
               library: Library = Depends(get_library)):
    """List books, or search title/author/category with ``q``."""
    if q:
        books = library.books.search(q)
    else:
        books = library.books.list(limit=_page_size(limit), offset=offset)
    return [BookModel(**b.to_dict()) for b in books]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int, library: Library = Depends(get_library)):
    return BookModel(**library.books.get(book_id).to_dict())


@app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_book(payload: BookCreateModel, admin_name: str = Depends(get_admin_name),
                library: Library = Depends(get_library)):
    book = library.books.create(admin_name=admin_name, **payload.model_dump())
    return BookModel(**book.to_dict())


@app.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: int, update: BookUpdateModel, admin_name: str = Depends(get_admin_name),
                library: Library = Depends(get_library)):
    """Update a book. Changing ``stock`` keeps borrowed copies out of ``available``."""
    changes = update.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Provide at least one field to update.")
    book = library.books.update(book_id, admin_name=admin_name, **changes)
    return BookModel(**book.to_dict())


@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: int, admin_name: str = Depends(get_admin_name),
                library: Library = Depends(get_library)):
    library.books.delete(book_id, admin_name=admin_name)
    return {"message": "Book deleted successfully"}


# --- E-books ---
@app.get("/ebooks", response_model=List[EBookModel])
def list_ebooks(q: Optional[str] = None, limit: Optional[int] = Query(None, ge=1), offset: int = Query(0, ge=0),
                library: Library = Depends(get_library)):
    """List e-books newest first, or search title/author/category with ``q``."""
    if q:
        ebooks = library.ebooks.search(q)
    else:
        ebooks = library.ebooks.list(limit=_page_size(limit), offset=offset)
    return [EBookModel(**e.to_dict()) for e in ebooks]


@app.get("/ebooks/{ebook_id}", response_model=EBookModel)
def get_ebook(ebook_id: int, library: Library = Depends(get_library)):
    return EBookModel(**library.ebooks.get(ebook_id).to_dict())


@app.post("/ebooks", response_model=EBookModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_ebook(payload: EBookCreateModel, admin_name: str = Depends(get_admin_name),
                 library: Library = Depends(get_library)):
    ebook = library.ebooks.create(admin_name=admin_name, **payload.model_dump())
    return EBookModel(**ebook.to_dict())


@app.put("/ebooks/{ebook_id}", response_model=EBookModel, dependencies=[Depends(get_api_key)])
def update_ebook(ebook_id: int, update: EBookUpdateModel, admin_name: str = Depends(get_admin_name),
                 library: Library = Depends(get_library)):
    changes = update.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Provide at least one field to update.")
    ebook = library.ebooks.update(ebook_id, admin_name=admin_name, **changes)
    return EBookModel(**ebook.to_dict())


@app.delete("/ebooks/{ebook_id}", dependencies=[Depends(get_api_key)])
def delete_ebook(ebook_id: int, admin_name: str = Depends(get_admin_name),
                 library: Library = Depends(get_library)):
    library.ebooks.delete(ebook_id, admin_name=admin_name)
    return {"message": "E-book deleted successfully"}


# --- Members ---
@app.get("/members", response_model=List[MemberModel])
def list_members(q: Optional[str] = None, status: Optional[str] = None,
                 limit: Optional[int] = Query(None, ge=1), offset: int = Query(0, ge=0),
                 library: Library = Depends(get_library)):
    if status and status not in MEMBER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status. Allowed: {', '.join(MEMBER_STATUSES)}")
    if q:
        members = library.members.search(q)
    else:
        members = library.members.list(limit=_page_size(limit), offset=offset, status=status)
    return [MemberModel(**m.to_dict()) for m in members]


@app.get("/members/{member_id}", response_model=MemberModel)
def get_member(member_id: int, library: Library = Depends(get_library)):
    return MemberModel(**library.members.get(member_id).to_dict())


@app.post("/members", response_model=MemberModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_member(payload: MemberCreateModel, admin_name: str = Depends(get_admin_name),
                  library: Library = Depends(get_library)):
    member = library.members.create(admin_name=admin_name, **payload.model_dump())
    return MemberModel(**member.to_dict())


@app.put("/members/{member_id}", response_model=MemberModel, dependencies=[Depends(get_api_key)])
def update_member(member_id: int, update: MemberUpdateModel, admin_name: str = Depends(get_admin_name),
                  library: Library = Depends(get_library)):
    changes = update.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Provide at least one field to update.")
    member = library.members.update(member_id, admin_name=admin_name, **changes)
    return MemberModel(**member.to_dict())


@app.delete("/members/{member_id}", dependencies=[Depends(get_api_key)])
def delete_member(member_id: int, admin_name: str = Depends(get_admin_name),
                  library: Library = Depends(get_library)):
    library.members.delete(member_id, admin_name=admin_name)
    return {"message": "Member deleted successfully"}


@app.post("/members/{member_id}/suspend", response_model=MemberModel, dependencies=[Depends(get_api_key)])
def suspend_member(member_id: int, admin_name: str = Depends(get_admin_name),
                   library: Library = Depends(get_library)):
    return MemberModel(**library.members.suspend(member_id, admin_name=admin_name).to_dict())


@app.post("/members/{member_id}/activate", response_model=MemberModel, dependencies=[Depends(get_api_key)])
def activate_member(member_id: int, admin_name: str = Depends(get_admin_name),
                    library: Library = Depends(get_library)):
    return MemberModel(**library.members.activate(member_id, admin_name=admin_name).to_dict())


@app.get("/members/{member_id}/eligibility", response_model=EligibilityModel)
def member_eligibility(member_id: int, library: Library = Depends(get_library)):
    return EligibilityModel(**library.members.check_eligibility(member_id).to_dict())


@app.get("/members/{member_id}/borrowings", response_model=List[BorrowingModel])
def member_borrowings(member_id: int, library: Library = Depends(get_library)):
    return [BorrowingModel(**b.to_dict()) for b in library.borrowings.member_history(member_id)]


# --- Borrowings ---
@app.get("/borrowings", response_model=List[BorrowingModel])
def list_borrowings(status: Optional[str] = None, member_id: Optional[int] = None,
                    book_id: Optional[int] = None, overdue: bool = False,
                    limit: Optional[int] = Query(None, ge=1), offset: int = Query(0, ge=0),
                    library: Library = Depends(get_library)):
    """List borrowings filtered by status, member or book; ``overdue=true`` lists late open ones."""
    if overdue:
        borrowings = library.borrowings.list_overdue()
    else:
        if status and status not in BORROWING_STATUSES:
            raise HTTPException(status_code=400,
                                detail=f"Invalid status. Allowed: {', '.join(BORROWING_STATUSES)}")
        borrowings = library.borrowings.list(status=status, member_id=member_id, book_id=book_id,
                                             limit=_page_size(limit), offset=offset)
    return [BorrowingModel(**b.to_dict()) for b in borrowings]


@app.post("/borrowings/overdue-sweep", response_model=SweepResultModel, dependencies=[Depends(get_api_key)])
def sweep_overdue(library: Library = Depends(get_library)):
    """Mark open borrowings past their due date as overdue."""
    return SweepResultModel(updated=library.borrowings.update_overdue_status())


@app.get("/borrowings/{borrowing_id}", response_model=BorrowingModel)
def get_borrowing(borrowing_id: int, library: Library = Depends(get_library)):
    return BorrowingModel(**library.borrowings.get(borrowing_id).to_dict())


@app.post("/borrowings", response_model=BorrowingModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_borrowing(payload: BorrowingCreateModel, admin_name: str = Depends(get_admin_name),
                     library: Library = Depends(get_library)):
    """Lend a book. Without a due date the maximum borrowing period is used."""
    due_date = payload.due_date or library.now() + timedelta(days=library.policy.max_borrow_days)
    borrowing = library.borrowings.create(
        payload.book_id, payload.member_id, due_date, notes=payload.notes, admin_name=admin_name,
    )
    return BorrowingModel(**borrowing.to_dict())


@app.post("/borrowings/{borrowing_id}/return", response_model=BorrowingModel,
          dependencies=[Depends(get_api_key)])
def return_borrowing(borrowing_id: int, admin_name: str = Depends(get_admin_name),
                     library: Library = Depends(get_library)):
    borrowing = library.borrowings.return_book(borrowing_id, admin_name=admin_name)
    return BorrowingModel(**borrowing.to_dict())


# --- Activity log ---
@app.get("/activity-logs", response_model=List[ActivityLogModel], dependencies=[Depends(get_api_key)])
def list_activity_logs(limit: int = Query(50, ge=1, le=500), action: Optional[str] = None,
                       entity_type: Optional[str] = None, admin_name: Optional[str] = None,
                       library: Library = Depends(get_library)):
    entries = library.activity.list(limit=limit, action=action, entity_type=entity_type,
                                    admin_name=admin_name)
    return [ActivityLogModel(**entry) for entry in entries]


# --- Stats and reports ---
@app.get("/stats", response_model=StatsModel)
def stats(library: Library = Depends(get_library)):
    return StatsModel(**library.reports.overall())


@app.get("/reports/popular-books")
def popular_books(limit: int = Query(10, ge=1, le=100), library: Library = Depends(get_library)):
    return library.reports.popular_books(limit)


@app.get("/reports/active-members")
def active_members(limit: int = Query(10, ge=1, le=100), library: Library = Depends(get_library)):
    return library.reports.active_members(limit)
