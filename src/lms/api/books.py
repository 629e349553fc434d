from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from lms.deps import get_session
from lms.auth import require_librarian
from lms.models import User
from lms.schemas import BookIn, BookUpdate, BookOut, PaginationOut
from lms.actions.catalog import list_books, get_book, create_book, update_book, delete_book
from lms.api.common import fail, ok

router = APIRouter(prefix="/books", tags=["books"])

@router.get("")
async def http_list_books(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = Query(None, min_length=1, pattern=r"\S"),
    available: bool | None = Query(None),
    session: AsyncSession = Depends(get_session),
):
    r = await list_books(session, page=page, limit=limit, search=search, available=available)
    d = r["data"]
    return ok(
        books=[BookOut.model_validate(b).dump() for b in d["books"]],
        pagination=PaginationOut(**d["pagination"]).dump(),
    )

@router.get("/{book_id}")
async def http_get_book(book_id: str, session: AsyncSession = Depends(get_session)):
    r = await get_book(session, book_id=book_id)
    if not r["ok"]:
        fail(r)
    return ok(book=BookOut.model_validate(r["data"]["book"]).dump())

@router.post("", status_code=status.HTTP_201_CREATED)
async def http_create_book(
    payload: BookIn,
    session: AsyncSession = Depends(get_session),
    librarian: User = Depends(require_librarian),
):
    r = await create_book(session, **payload.model_dump())
    if not r["ok"]:
        fail(r)
    return ok(r["message"], book=BookOut.model_validate(r["data"]["book"]).dump())

@router.put("/{book_id}")
async def http_update_book(
    book_id: str,
    payload: BookUpdate,
    session: AsyncSession = Depends(get_session),
    librarian: User = Depends(require_librarian),
):
    r = await update_book(session, book_id=book_id, changes=payload.model_dump(exclude_unset=True))
    if not r["ok"]:
        fail(r)
    return ok(r["message"], book=BookOut.model_validate(r["data"]["book"]).dump())

@router.delete("/{book_id}")
async def http_delete_book(
    book_id: str,
    session: AsyncSession = Depends(get_session),
    librarian: User = Depends(require_librarian),
):
    r = await delete_book(session, book_id=book_id)
    if not r["ok"]:
        fail(r)
    return ok(r["message"])
