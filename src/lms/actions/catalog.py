from __future__ import annotations
import logging
from typing import Optional, Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_, update, delete

from lms.models import Book, BorrowRecord, ACTIVE_STATUSES
from lms.actions.common import _ok, _err, _abort, parse_id, pagination

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "title", "author", "isbn", "quantity", "available",
    "description", "genre", "cover_url", "published_year",
)

async def _find_book(session: AsyncSession, book_id: str, *, for_update: bool = False) -> Optional[Book]:
    stmt = select(Book).where(Book.id == book_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    r = await session.execute(stmt)
    return r.scalar_one_or_none()

async def _isbn_taken(session: AsyncSession, isbn: str) -> bool:
    r = await session.execute(select(Book.id).where(Book.isbn == isbn))
    return r.first() is not None

async def list_books(
    session: AsyncSession, *, page: int = 1, limit: int = 10,
    search: Optional[str] = None, available: Optional[bool] = None,
) -> Dict[str, Any]:
    conditions = []
    if search:
        term = search.strip()
        conditions.append(or_(
            Book.title.icontains(term, autoescape=True),
            Book.author.icontains(term, autoescape=True),
            func.coalesce(Book.description, "").icontains(term, autoescape=True),
        ))
    if available:
        conditions.append(Book.available > 0)
    q = select(Book).where(*conditions).order_by(Book.title.asc()).offset((page - 1) * limit).limit(limit)
    books: List[Book] = (await session.execute(q)).scalars().all()
    total = (await session.execute(select(func.count()).select_from(Book).where(*conditions))).scalar_one()
    return _ok("Books fetched.", books=books, pagination=pagination(page, limit, total))

async def get_book(session: AsyncSession, *, book_id: str) -> Dict[str, Any]:
    bid = parse_id(book_id)
    if not bid:
        return _err("Invalid book ID", code="INVALID_ID")
    book = await _find_book(session, bid)
    if not book:
        return _err("Book not found", code="BOOK_NOT_FOUND")
    return _ok("Book fetched.", book=book)

async def create_book(
    session: AsyncSession, *, title: str, author: str, isbn: str, quantity: int,
    description: Optional[str] = None, genre: Optional[str] = None,
    cover_url: Optional[str] = None, published_year: Optional[int] = None,
) -> Dict[str, Any]:
    if not (title and author and isbn):
        return _err("Title, author and ISBN are required.", code="VALIDATION_ERROR")
    if quantity is None or quantity < 1:
        return _err("Quantity must be at least 1", code="VALIDATION_ERROR")
    if await _isbn_taken(session, isbn):
        return _err("Book with this ISBN already exists", code="ISBN_EXISTS")
    book = Book(
        title=title, author=author, isbn=isbn, quantity=quantity,
        description=description, genre=genre, cover_url=cover_url, published_year=published_year,
    )
    session.add(book)
    await session.commit()
    await session.refresh(book)
    logger.info("Book created: %s (%s)", book.id, book.isbn)
    return _ok("Book created successfully", book=book)

async def update_book(session: AsyncSession, *, book_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    bid = parse_id(book_id)
    if not bid:
        return _err("Invalid book ID", code="INVALID_ID")
    book = await _find_book(session, bid, for_update=True)
    if not book:
        await _abort(session)
        return _err("Book not found", code="BOOK_NOT_FOUND")
    changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
    for required in ("title", "author", "isbn", "quantity", "available"):
        if required in changes and changes[required] is None:
            await _abort(session)
            return _err(f"{required} cannot be empty", code="VALIDATION_ERROR")
    new_isbn = changes.get("isbn")
    if new_isbn and new_isbn != book.isbn and await _isbn_taken(session, new_isbn):
        await _abort(session)
        return _err("Book with this ISBN already exists", code="ISBN_EXISTS")
    new_quantity = changes.get("quantity", book.quantity)
    new_available = changes.get("available", book.available)
    if new_available > new_quantity:
        await _abort(session)
        return _err("Available count cannot exceed total quantity", code="AVAILABLE_EXCEEDS_QUANTITY")
    for key, value in changes.items():
        setattr(book, key, value)
    await session.commit()
    await session.refresh(book)
    logger.info("Book updated: %s fields=%s", book.id, sorted(changes))
    return _ok("Book updated successfully", book=book)

async def delete_book(session: AsyncSession, *, book_id: str) -> Dict[str, Any]:
    bid = parse_id(book_id)
    if not bid:
        return _err("Invalid book ID", code="INVALID_ID")
    book = await _find_book(session, bid, for_update=True)
    if not book:
        await _abort(session)
        return _err("Book not found", code="BOOK_NOT_FOUND")
    active = (await session.execute(
        select(func.count()).select_from(BorrowRecord).where(
            BorrowRecord.book_id == bid, BorrowRecord.status.in_(ACTIVE_STATUSES)
        )
    )).scalar_one()
    if active:
        await _abort(session)
        return _err("Cannot delete book with active borrows", code="ACTIVE_BORROWS", active_borrows=active)
    r = await session.execute(
        update(BorrowRecord).where(BorrowRecord.book_id == bid).values(book_id=None)
        .execution_options(synchronize_session=False)
    )
    await session.execute(delete(Book).where(Book.id == bid))
    await session.commit()
    logger.info("Book deleted: %s (detached %s past borrows)", bid, r.rowcount)
    return _ok("Book deleted successfully", book_id=bid, detached_borrows=r.rowcount)
