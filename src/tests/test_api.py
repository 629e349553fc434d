import asyncio
import httpx
import pytest
import pytest_asyncio
from datetime import timedelta
from sqlalchemy import update
from lms import models
from lms.config import Settings
from lms.db import init_db
from lms.errors import ERROR_STATUS
from lms.main import create_app
from lms.models import utcnow
from conftest import mk_user

pytestmark = pytest.mark.asyncio

BOOK = {
    "title": "The Pragmatic Programmer",
    "author": "Hunt & Thomas",
    "isbn": "9780201616224",
    "quantity": 1,
    "genre": "Software",
    "coverUrl": "https://covers.example.com/pragprog.jpg",
    "publishedYear": 1999,
}

def _auth(token):
    return {"Authorization": f"Bearer {token}"}

@pytest_asyncio.fixture
async def app():
    application = create_app(Settings(DATABASE_URL="sqlite+aiosqlite:///:memory:", ENABLE_OVERDUE_SWEEPER=False))
    await init_db(application.state.engine)
    async with application.state.sessionmaker() as s:
        await mk_user(s, name="Alice", token="alice-token")
        await mk_user(s, name="Bob", token="bob-token")
        await mk_user(s, name="Libby", role=models.Role.LIBRARIAN, token="libby-token")
    try:
        yield application
    finally:
        await application.state.engine.dispose()

@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c

async def _create_book(client, **overrides):
    resp = await client.post("/api/books", json={**BOOK, **overrides}, headers=_auth("libby-token"))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["book"]

async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert "timestamp" in body

async def test_unknown_route_uses_envelope(client):
    resp = await client.get("/api/nowhere")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Route not found"}

async def test_create_book_requires_librarian(client):
    resp = await client.post("/api/books", json=BOOK)
    assert resp.status_code == 401
    assert resp.json()["success"] is False
    resp = await client.post("/api/books", json=BOOK, headers=_auth("alice-token"))
    assert resp.status_code == 403
    resp = await client.post("/api/books", json=BOOK, headers=_auth("forged"))
    assert resp.status_code == 401

async def test_auth_failures_use_error_codes(client):
    assert ERROR_STATUS["UNAUTHENTICATED"] == 401
    assert ERROR_STATUS["LIBRARIAN_ONLY"] == 403
    resp = await client.get("/api/borrow/my-books")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "Access token required"}
    resp = await client.get("/api/borrow/my-books", headers=_auth("forged"))
    assert resp.json() == {"success": False, "message": "Invalid token"}
    resp = await client.get("/api/borrow/all", headers=_auth("alice-token"))
    assert resp.status_code == 403
    assert resp.json() == {"success": False, "message": "Librarian access required"}

async def test_create_and_fetch_book_uses_camel_case(client):
    book = await _create_book(client, quantity=3)
    assert book["available"] == 3
    assert book["coverUrl"] == BOOK["coverUrl"]
    assert book["publishedYear"] == 1999
    resp = await client.get(f"/api/books/{book['id']}")
    assert resp.status_code == 200
    assert resp.json()["data"]["book"]["isbn"] == BOOK["isbn"]

async def test_create_book_validation_errors(client):
    resp = await client.post(
        "/api/books", json={**BOOK, "isbn": "not-an-isbn", "quantity": 0}, headers=_auth("libby-token")
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    fields = {e["field"] for e in body["errors"]}
    assert {"isbn", "quantity"} <= fields

async def test_duplicate_isbn_conflict(client):
    await _create_book(client)
    resp = await client.post("/api/books", json=BOOK, headers=_auth("libby-token"))
    assert resp.status_code == 409
    assert resp.json()["message"] == "Book with this ISBN already exists"

async def test_get_book_bad_id(client):
    resp = await client.get("/api/books/xyz")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid book ID"
    resp = await client.get("/api/books/00000000-0000-0000-0000-000000000000")
    assert resp.status_code == 404

async def test_update_book_partial(client):
    book = await _create_book(client, quantity=2)
    resp = await client.put(f"/api/books/{book['id']}", json={"available": 3}, headers=_auth("libby-token"))
    assert resp.status_code == 400
    assert resp.json()["message"] == "Available count cannot exceed total quantity"
    resp = await client.put(f"/api/books/{book['id']}", json={"genre": "Craft"}, headers=_auth("libby-token"))
    assert resp.status_code == 200
    assert resp.json()["data"]["book"]["genre"] == "Craft"
    assert resp.json()["data"]["book"]["quantity"] == 2

async def test_list_books_pagination_envelope(client):
    await _create_book(client)
    await _create_book(client, title="Refactoring", isbn="9780201485677")
    resp = await client.get("/api/books", params={"limit": 1, "search": "refactor"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert [b["title"] for b in data["books"]] == ["Refactoring"]
    assert data["pagination"] == {
        "currentPage": 1, "totalPages": 1, "totalItems": 1, "hasNextPage": False, "hasPrevPage": False,
    }
    resp = await client.get("/api/books", params={"limit": 500})
    assert resp.status_code == 400

async def test_borrow_return_flow(client):
    book = await _create_book(client)
    resp = await client.post("/api/borrow", json={"bookId": book["id"]}, headers=_auth("alice-token"))
    assert resp.status_code == 201, resp.text
    borrow = resp.json()["data"]["borrow"]
    assert borrow["status"] == "borrowed"
    assert borrow["book"]["title"] == BOOK["title"]
    assert borrow["renewalCount"] == 0

    resp = await client.post("/api/borrow", json={"bookId": book["id"]}, headers=_auth("bob-token"))
    assert resp.status_code == 409
    assert resp.json()["message"] == "Book is not available for borrowing"

    resp = await client.get("/api/borrow/my-books", headers=_auth("alice-token"))
    assert [b["id"] for b in resp.json()["data"]["borrows"]] == [borrow["id"]]

    resp = await client.post("/api/borrow/return", json={"borrowId": borrow["id"]}, headers=_auth("alice-token"))
    assert resp.status_code == 200
    assert resp.json()["data"]["borrow"]["status"] == "returned"
    assert resp.json()["data"]["borrow"]["returnDate"] is not None

    resp = await client.post("/api/borrow/return", json={"borrowId": borrow["id"]}, headers=_auth("alice-token"))
    assert resp.status_code == 404

    resp = await client.get(f"/api/books/{book['id']}")
    assert resp.json()["data"]["book"]["available"] == 1

async def test_librarian_cannot_borrow(client):
    book = await _create_book(client)
    resp = await client.post("/api/borrow", json={"bookId": book["id"]}, headers=_auth("libby-token"))
    assert resp.status_code == 403
    assert resp.json()["message"] == "Librarians cannot borrow books"

async def test_renew_twice_then_conflict(client):
    book = await _create_book(client)
    resp = await client.post("/api/borrow", json={"bookId": book["id"]}, headers=_auth("alice-token"))
    borrow_id = resp.json()["data"]["borrow"]["id"]
    for expected in (1, 2):
        resp = await client.patch(f"/api/borrow/renew/{borrow_id}", headers=_auth("alice-token"))
        assert resp.status_code == 200
        assert resp.json()["data"]["borrow"]["renewalCount"] == expected
    resp = await client.patch(f"/api/borrow/renew/{borrow_id}", headers=_auth("alice-token"))
    assert resp.status_code == 409
    assert resp.json()["message"] == "Maximum renewals reached"

async def test_read_paths_flip_overdue(app, client):
    book = await _create_book(client)
    resp = await client.post("/api/borrow", json={"bookId": book["id"]}, headers=_auth("alice-token"))
    borrow_id = resp.json()["data"]["borrow"]["id"]
    async with app.state.sessionmaker() as s:
        await s.execute(
            update(models.BorrowRecord).where(models.BorrowRecord.id == borrow_id)
            .values(due_date=utcnow() - timedelta(days=1))
        )
        await s.commit()

    resp = await client.get("/api/borrow/my-books", headers=_auth("alice-token"))
    listed = resp.json()["data"]["borrows"]
    assert listed[0]["status"] == "overdue"
    assert listed[0]["isOverdue"] is True

    resp = await client.get("/api/borrow/overdue", headers=_auth("libby-token"))
    overdue = resp.json()["data"]["overdueBorrows"]
    assert [b["id"] for b in overdue] == [borrow_id]
    assert overdue[0]["user"]["name"] == "Alice"

    resp = await client.get("/api/borrow/stats", headers=_auth("libby-token"))
    assert resp.json()["data"] == {
        "totalBooks": 1, "availableBooks": 0, "currentlyBorrowed": 0, "overdueBooks": 1, "borrowsThisMonth": 1,
    }

async def test_librarian_only_borrow_views(client):
    for path in ("/api/borrow/all", "/api/borrow/overdue", "/api/borrow/stats"):
        resp = await client.get(path, headers=_auth("alice-token"))
        assert resp.status_code == 403
    resp = await client.get("/api/borrow/all", params={"status": "lost"}, headers=_auth("libby-token"))
    assert resp.status_code == 400
    resp = await client.get("/api/borrow/all", params={"userId": "x"}, headers=_auth("libby-token"))
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid user ID"

async def test_delete_blocked_until_return(client):
    book = await _create_book(client)
    resp = await client.post("/api/borrow", json={"bookId": book["id"]}, headers=_auth("alice-token"))
    borrow_id = resp.json()["data"]["borrow"]["id"]
    resp = await client.delete(f"/api/books/{book['id']}", headers=_auth("libby-token"))
    assert resp.status_code == 409
    assert resp.json()["message"] == "Cannot delete book with active borrows"
    await client.post("/api/borrow/return", json={"borrowId": borrow_id}, headers=_auth("alice-token"))
    resp = await client.delete(f"/api/books/{book['id']}", headers=_auth("libby-token"))
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Book deleted successfully"}

    resp = await client.get("/api/borrow/my-books", headers=_auth("alice-token"))
    kept = resp.json()["data"]["borrows"][0]
    assert kept["bookId"] is None
    assert kept["book"] is None

async def test_concurrent_borrows_of_last_copy(tmp_path):
    # File-backed so each request runs on its own connection.
    application = create_app(Settings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'race.db'}"))
    await init_db(application.state.engine)
    tokens = [f"reader-{i}-token" for i in range(6)]
    async with application.state.sessionmaker() as s:
        for i, token in enumerate(tokens):
            await mk_user(s, name=f"Reader{i}", token=token)
        await mk_user(s, name="Libby", role=models.Role.LIBRARIAN, token="libby-token")
    try:
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=application), base_url="http://test") as c:
            book = await _create_book(c, quantity=1)
            responses = await asyncio.gather(*(
                c.post("/api/borrow", json={"bookId": book["id"]}, headers=_auth(token)) for token in tokens
            ))
            assert sorted(r.status_code for r in responses) == [201, 409, 409, 409, 409, 409]
            resp = await c.get(f"/api/books/{book['id']}")
            assert resp.json()["data"]["book"]["available"] == 0
            resp = await c.get("/api/borrow/all", headers=_auth("libby-token"))
            assert resp.json()["data"]["pagination"]["totalItems"] == 1
    finally:
        await application.state.engine.dispose()
