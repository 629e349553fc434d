import re
from datetime import datetime
from typing import Annotated, Literal
from pydantic import AfterValidator, BaseModel, ConfigDict, constr, conint
from pydantic.alias_generators import to_camel
from lms.models import BorrowStatus

ISBN_RE = re.compile(
    r"^(?:ISBN(?:-1[03])?:? )?(?=[0-9X]{10}$|(?=(?:[0-9]+[- ]){3})[- 0-9X]{13}$|97[89][0-9]{10}$"
    r"|(?=(?:[0-9]+[- ]){4})[- 0-9]{17}$)(?:97[89][- ]?)?[0-9]{1,5}[- ]?[0-9]+[- ]?[0-9]+[- ]?[0-9X]$"
)

BorrowStatusFilter = Literal["borrowed", "returned", "overdue", "all"]

def _check_isbn(v):
    if v is not None and not ISBN_RE.match(v):
        raise ValueError("Please provide a valid ISBN")
    return v

def _check_year(v):
    if v is not None and v > datetime.now().year:
        raise ValueError("Published year cannot be in the future")
    return v

IsbnStr = Annotated[constr(strip_whitespace=True, min_length=1), AfterValidator(_check_isbn)]
PublishedYear = Annotated[conint(ge=1000), AfterValidator(_check_year)]

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

class BookIn(CamelModel):
    title: constr(strip_whitespace=True, min_length=1, max_length=200)
    author: constr(strip_whitespace=True, min_length=1, max_length=100)
    isbn: IsbnStr
    quantity: conint(ge=1)
    description: constr(strip_whitespace=True, max_length=1000) | None = None
    genre: constr(strip_whitespace=True, max_length=50) | None = None
    cover_url: constr(strip_whitespace=True, max_length=1000) | None = None
    published_year: PublishedYear | None = None

class BookUpdate(CamelModel):
    title: constr(strip_whitespace=True, min_length=1, max_length=200) | None = None
    author: constr(strip_whitespace=True, min_length=1, max_length=100) | None = None
    isbn: IsbnStr | None = None
    quantity: conint(ge=0) | None = None
    available: conint(ge=0) | None = None
    description: constr(strip_whitespace=True, max_length=1000) | None = None
    genre: constr(strip_whitespace=True, max_length=50) | None = None
    cover_url: constr(strip_whitespace=True, max_length=1000) | None = None
    published_year: PublishedYear | None = None

class BorrowIn(CamelModel):
    book_id: constr(strip_whitespace=True, min_length=1)

class ReturnIn(CamelModel):
    borrow_id: constr(strip_whitespace=True, min_length=1)

class BookOut(CamelModel):
    id: str
    title: str
    author: str
    isbn: str
    quantity: int
    available: int
    description: str | None
    genre: str | None
    cover_url: str | None
    published_year: int | None
    created_at: datetime
    updated_at: datetime

class BookSummary(CamelModel):
    id: str
    title: str
    author: str
    isbn: str
    description: str | None
    genre: str | None
    cover_url: str | None
    updated_at: datetime

class UserSummary(CamelModel):
    id: str
    name: str
    email: str

class BorrowOut(CamelModel):
    id: str
    user_id: str
    book_id: str | None
    book: BookSummary | None = None
    user: UserSummary | None = None
    borrow_date: datetime
    due_date: datetime
    return_date: datetime | None
    status: BorrowStatus
    renewal_count: int
    is_overdue: bool

class PaginationOut(CamelModel):
    current_page: int
    total_pages: int
    total_items: int
    has_next_page: bool
    has_prev_page: bool

class StatsOut(CamelModel):
    total_books: int
    available_books: int
    currently_borrowed: int
    overdue_books: int
    borrows_this_month: int
