from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from lms.config import Settings
from lms.deps import get_session, get_settings
from lms.auth import get_current_user, require_librarian
from lms.models import User
from lms.schemas import BorrowIn, ReturnIn, BorrowOut, PaginationOut, StatsOut, BorrowStatusFilter
from lms.actions.borrowing import (
    borrow_book, return_book, renew_borrow,
    list_my_borrows, list_all_borrows, list_overdue, borrow_stats,
)
from lms.api.common import fail, ok

router = APIRouter(prefix="/borrow", tags=["borrow"])

def _borrows(records) -> list[dict]:
    return [BorrowOut.model_validate(rec).dump() for rec in records]

@router.post("", status_code=status.HTTP_201_CREATED)
async def http_borrow_book(
    payload: BorrowIn,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    r = await borrow_book(
        session, user=user, book_id=payload.book_id,
        loan_days=settings.LOAN_DAYS, borrow_limit=settings.BORROW_LIMIT,
    )
    if not r["ok"]:
        fail(r)
    return ok(r["message"], borrow=BorrowOut.model_validate(r["data"]["borrow"]).dump())

@router.post("/return")
async def http_return_book(
    payload: ReturnIn,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    r = await return_book(session, user=user, borrow_id=payload.borrow_id)
    if not r["ok"]:
        fail(r)
    return ok(r["message"], borrow=BorrowOut.model_validate(r["data"]["borrow"]).dump())

@router.patch("/renew/{borrow_id}")
async def http_renew_borrow(
    borrow_id: str,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    r = await renew_borrow(
        session, user=user, borrow_id=borrow_id,
        loan_days=settings.LOAN_DAYS, max_renewals=settings.MAX_RENEWALS,
    )
    if not r["ok"]:
        fail(r)
    return ok(r["message"], borrow=BorrowOut.model_validate(r["data"]["borrow"]).dump())

@router.get("/my-books")
async def http_my_borrows(
    status: BorrowStatusFilter = Query("all"),
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    r = await list_my_borrows(session, user=user, status=status)
    return ok(borrows=_borrows(r["data"]["borrows"]))

@router.get("/all")
async def http_all_borrows(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: BorrowStatusFilter = Query("all"),
    user_id: str | None = Query(None, alias="userId"),
    session: AsyncSession = Depends(get_session),
    librarian: User = Depends(require_librarian),
):
    r = await list_all_borrows(session, page=page, limit=limit, status=status, user_id=user_id)
    if not r["ok"]:
        fail(r)
    d = r["data"]
    return ok(borrows=_borrows(d["borrows"]), pagination=PaginationOut(**d["pagination"]).dump())

@router.get("/overdue")
async def http_overdue_borrows(
    session: AsyncSession = Depends(get_session),
    librarian: User = Depends(require_librarian),
):
    r = await list_overdue(session)
    return ok(overdueBorrows=_borrows(r["data"]["overdue_borrows"]))

@router.get("/stats")
async def http_borrow_stats(
    session: AsyncSession = Depends(get_session),
    librarian: User = Depends(require_librarian),
):
    r = await borrow_stats(session)
    return ok(**StatsOut(**r["data"]).dump())
