import enum, uuid
from datetime import datetime, timedelta, timezone
from sqlalchemy import (
    String, Integer, Enum, ForeignKey, Text, DateTime, CheckConstraint, Index, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from lms.db import Base

def utcnow() -> datetime:
    # Naive UTC everywhere; SQLite drops tzinfo on the way back.
    return datetime.now(timezone.utc).replace(tzinfo=None)

def _values(enum_cls):
    return [member.value for member in enum_cls]

class Role(str, enum.Enum):
    BORROWER = "borrower"
    LIBRARIAN = "librarian"

class BorrowStatus(str, enum.Enum):
    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"

ACTIVE_STATUSES = (BorrowStatus.BORROWED, BorrowStatus.OVERDUE)
DEFAULT_LOAN_DAYS = 14

class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    role: Mapped[Role] = mapped_column(
        Enum(Role, native_enum=False, values_callable=_values), default=Role.BORROWER, nullable=False
    )
    token_hash: Mapped[str | None] = mapped_column(String(64), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    @property
    def is_librarian(self) -> bool:
        return self.role == Role.LIBRARIAN

class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_books_quantity_non_negative"),
        CheckConstraint("available >= 0", name="ck_books_available_non_negative"),
        CheckConstraint("available <= quantity", name="ck_books_available_le_quantity"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    author: Mapped[str] = mapped_column(String(100), nullable=False)
    isbn: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    available: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    genre: Mapped[str | None] = mapped_column(String(50))
    cover_url: Mapped[str | None] = mapped_column(String(1000))
    published_year: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __init__(self, **kwargs):
        # All copies start on the shelf unless told otherwise.
        if kwargs.get("available") is None:
            kwargs["available"] = kwargs.get("quantity", 1)
        super().__init__(**kwargs)

    def is_available(self) -> bool:
        return self.available > 0

class BorrowRecord(Base):
    __tablename__ = "borrow_records"
    __table_args__ = (
        CheckConstraint("renewal_count >= 0", name="ck_borrow_records_renewal_count_non_negative"),
        Index(
            "uq_borrow_records_active_user_book", "user_id", "book_id",
            unique=True,
            sqlite_where=text("status IN ('borrowed', 'overdue')"),
            postgresql_where=text("status IN ('borrowed', 'overdue')"),
        ),
        Index("ix_borrow_records_user_status", "user_id", "status"),
        Index("ix_borrow_records_book_status", "book_id", "status"),
        Index("ix_borrow_records_due_status", "due_date", "status"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    # Nulled when the book leaves the catalog; records are kept as history.
    book_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("books.id", ondelete="SET NULL"), nullable=True)
    borrow_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    return_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[BorrowStatus] = mapped_column(
        Enum(BorrowStatus, native_enum=False, values_callable=_values), default=BorrowStatus.BORROWED, nullable=False
    )
    renewal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    user = relationship("User", lazy="selectin")
    book = relationship("Book", lazy="selectin")

    def __init__(self, **kwargs):
        if kwargs.get("borrow_date") is None:
            kwargs["borrow_date"] = utcnow()
        if kwargs.get("due_date") is None:
            kwargs["due_date"] = kwargs["borrow_date"] + timedelta(days=DEFAULT_LOAN_DAYS)
        super().__init__(**kwargs)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_overdue(self) -> bool:
        if self.status == BorrowStatus.RETURNED:
            return False
        return utcnow() > self.due_date
