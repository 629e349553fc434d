from __future__ import annotations
import logging
from typing import Optional, Dict, Any, List
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func, update

from lms.models import (
    Book, BorrowRecord, BorrowStatus, User, ACTIVE_STATUSES, DEFAULT_LOAN_DAYS, utcnow
)
from lms.actions.catalog import _find_book
from lms.actions.common import _ok, _err, _abort, parse_id, pagination

logger = logging.getLogger(__name__)

DEFAULT_MAX_RENEWALS = 2
DEFAULT_BORROW_LIMIT = 5

async def _take_copy(session: AsyncSession, book_id: str) -> bool:
    r = await session.execute(
        update(Book).where(Book.id == book_id, Book.available > 0)
        .values(available=Book.available - 1)
        .execution_options(synchronize_session=False)
    )
    return r.rowcount == 1

async def _put_back_copy(session: AsyncSession, book_id: str) -> bool:
    r = await session.execute(
        update(Book).where(Book.id == book_id, Book.available < Book.quantity)
        .values(available=Book.available + 1)
        .execution_options(synchronize_session=False)
    )
    return r.rowcount == 1

async def _count_active(session: AsyncSession, user_id: str, book_id: Optional[str] = None) -> int:
    conditions = [BorrowRecord.user_id == user_id, BorrowRecord.status.in_(ACTIVE_STATUSES)]
    if book_id:
        conditions.append(BorrowRecord.book_id == book_id)
    r = await session.execute(select(func.count()).select_from(BorrowRecord).where(*conditions))
    return r.scalar_one()

async def borrow_book(
    session: AsyncSession, *, user: User, book_id: str,
    loan_days: int = DEFAULT_LOAN_DAYS, borrow_limit: int = DEFAULT_BORROW_LIMIT,
) -> Dict[str, Any]:
    if user.is_librarian:
        return _err("Librarians cannot borrow books", code="LIBRARIAN_CANNOT_BORROW")
    user_id = user.id
    bid = parse_id(book_id)
    if not bid:
        return _err("Invalid book ID", code="INVALID_ID")
    try:
        book = await _find_book(session, bid, for_update=True)
        if not book:
            await _abort(session)
            return _err("Book not found", code="BOOK_NOT_FOUND")
        if not book.is_available():
            await _abort(session)
            return _err("Book is not available for borrowing", code="BOOK_UNAVAILABLE")
        if await _count_active(session, user_id, bid):
            await _abort(session)
            return _err("You have already borrowed this book", code="ALREADY_BORROWED")
        if await _count_active(session, user_id) >= borrow_limit:
            await _abort(session)
            return _err(
                f"You have reached the maximum borrowing limit ({borrow_limit} books)",
                code="BORROW_LIMIT_REACHED",
            )
        now = utcnow()
        record = BorrowRecord(
            user=user, book=book, borrow_date=now,
            due_date=now + timedelta(days=loan_days), status=BorrowStatus.BORROWED,
        )
        session.add(record)
        await session.flush()
        if not await _take_copy(session, bid):
            # Another borrower took the last copy between our read and write.
            await _abort(session)
            return _err("Book is not available for borrowing", code="BOOK_UNAVAILABLE")
        await session.commit()
    except IntegrityError:
        await _abort(session)
        logger.warning("Duplicate active borrow rejected: user=%s book=%s", user_id, bid)
        return _err("You have already borrowed this book", code="ALREADY_BORROWED")
    except Exception:
        await session.rollback()
        raise
    await session.refresh(book)
    logger.info("Borrowed: record=%s user=%s book=%s due=%s", record.id, user_id, bid, record.due_date.isoformat())
    return _ok("Book borrowed successfully", borrow=record)

async def return_book(session: AsyncSession, *, user: User, borrow_id: str) -> Dict[str, Any]:
    rid = parse_id(borrow_id)
    if not rid:
        return _err("Invalid borrow ID", code="INVALID_ID")
    try:
        r = await session.execute(
            select(BorrowRecord).where(
                BorrowRecord.id == rid,
                BorrowRecord.user_id == user.id,
                BorrowRecord.status.in_(ACTIVE_STATUSES),
            ).with_for_update().execution_options(populate_existing=True)
        )
        record = r.scalar_one_or_none()
        if not record:
            await _abort(session)
            return _err("Borrow record not found or already returned", code="BORROW_NOT_FOUND")
        record.return_date = utcnow()
        record.status = BorrowStatus.RETURNED
        await session.flush()
        if record.book_id and not await _put_back_copy(session, record.book_id):
            await _abort(session)
            return _err("Available count cannot exceed total quantity", code="AVAILABLE_EXCEEDS_QUANTITY")
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    if record.book is not None:
        await session.refresh(record.book)
    logger.info("Returned: record=%s user=%s book=%s", record.id, user.id, record.book_id)
    return _ok("Book returned successfully", borrow=record)

async def renew_borrow(
    session: AsyncSession, *, user: User, borrow_id: str,
    loan_days: int = DEFAULT_LOAN_DAYS, max_renewals: int = DEFAULT_MAX_RENEWALS,
) -> Dict[str, Any]:
    rid = parse_id(borrow_id)
    if not rid:
        return _err("Invalid borrow ID", code="INVALID_ID")
    r = await session.execute(
        select(BorrowRecord).where(BorrowRecord.id == rid, BorrowRecord.user_id == user.id)
    )
    record = r.scalar_one_or_none()
    if not record:
        return _err("Borrow record not found", code="BORROW_NOT_FOUND")
    if record.status == BorrowStatus.RETURNED:
        return _err("Cannot renew a returned book", code="ALREADY_RETURNED")
    if (record.renewal_count or 0) >= max_renewals:
        return _err("Maximum renewals reached", code="RENEWAL_LIMIT_REACHED")
    base = max(record.due_date, utcnow())
    record.due_date = base + timedelta(days=loan_days)
    record.status = BorrowStatus.BORROWED
    record.renewal_count = (record.renewal_count or 0) + 1
    await session.commit()
    await session.refresh(record)
    logger.info("Renewed: record=%s count=%s due=%s", record.id, record.renewal_count, record.due_date.isoformat())
    return _ok("Book renewed successfully", borrow=record)

async def sweep_overdue(session: AsyncSession, *, user_id: Optional[str] = None, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    conditions = [BorrowRecord.status == BorrowStatus.BORROWED, BorrowRecord.due_date < now]
    if user_id:
        conditions.append(BorrowRecord.user_id == user_id)
    r = await session.execute(
        update(BorrowRecord).where(*conditions)
        .values(status=BorrowStatus.OVERDUE)
        .execution_options(synchronize_session="fetch")
    )
    await session.commit()
    if r.rowcount:
        logger.info("Overdue sweep flipped %s record(s) (scope=%s)", r.rowcount, user_id or "all")
    return r.rowcount

async def list_my_borrows(session: AsyncSession, *, user: User, status: str = "all") -> Dict[str, Any]:
    await sweep_overdue(session, user_id=user.id)
    q = select(BorrowRecord).where(BorrowRecord.user_id == user.id)
    if status and status != "all":
        q = q.where(BorrowRecord.status == BorrowStatus(status))
    q = q.order_by(BorrowRecord.borrow_date.desc(), BorrowRecord.id)
    borrows: List[BorrowRecord] = (await session.execute(q)).scalars().all()
    return _ok("Borrows fetched.", borrows=borrows)

async def list_all_borrows(
    session: AsyncSession, *, page: int = 1, limit: int = 10,
    status: str = "all", user_id: Optional[str] = None,
) -> Dict[str, Any]:
    uid = None
    if user_id:
        uid = parse_id(user_id)
        if not uid:
            return _err("Invalid user ID", code="INVALID_ID")
    await sweep_overdue(session, user_id=uid)
    conditions = []
    if status and status != "all":
        conditions.append(BorrowRecord.status == BorrowStatus(status))
    if uid:
        conditions.append(BorrowRecord.user_id == uid)
    q = (
        select(BorrowRecord).where(*conditions)
        .order_by(BorrowRecord.borrow_date.desc(), BorrowRecord.id)
        .offset((page - 1) * limit).limit(limit)
    )
    borrows: List[BorrowRecord] = (await session.execute(q)).scalars().all()
    total = (await session.execute(select(func.count()).select_from(BorrowRecord).where(*conditions))).scalar_one()
    return _ok("Borrows fetched.", borrows=borrows, pagination=pagination(page, limit, total))

async def list_overdue(session: AsyncSession) -> Dict[str, Any]:
    await sweep_overdue(session)
    q = (
        select(BorrowRecord).where(BorrowRecord.status == BorrowStatus.OVERDUE)
        .order_by(BorrowRecord.due_date.asc(), BorrowRecord.id)
    )
    borrows: List[BorrowRecord] = (await session.execute(q)).scalars().all()
    return _ok("Overdue borrows fetched.", overdue_borrows=borrows)

async def borrow_stats(session: AsyncSession, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    async def count(model, *conditions) -> int:
        return (await session.execute(select(func.count()).select_from(model).where(*conditions))).scalar_one()

    return _ok(
        "Stats fetched.",
        total_books=await count(Book),
        available_books=await count(Book, Book.available > 0),
        currently_borrowed=await count(BorrowRecord, BorrowRecord.status == BorrowStatus.BORROWED),
        overdue_books=await count(BorrowRecord, BorrowRecord.status == BorrowStatus.OVERDUE),
        borrows_this_month=await count(BorrowRecord, BorrowRecord.borrow_date >= month_start),
    )
