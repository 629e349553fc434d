import pytest_asyncio
from lms.db import Base, make_engine, make_sessionmaker
from lms import models
from lms.auth import hash_token

@pytest_asyncio.fixture
async def async_engine():
    engine = make_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()

@pytest_asyncio.fixture
async def session(async_engine):
    SessionLocal = make_sessionmaker(async_engine)
    async with SessionLocal() as s:
        try:
            yield s
        finally:
            await s.rollback()

async def mk_user(session, *, name="Alice", email=None, role=models.Role.BORROWER, token=None):
    user = models.User(
        name=name,
        email=email or f"{name.lower()}@example.com",
        role=role,
        token_hash=hash_token(token) if token else None,
    )
    session.add(user)
    await session.commit()
    return user

@pytest_asyncio.fixture
async def alice(session):
    return await mk_user(session, name="Alice")

@pytest_asyncio.fixture
async def bob(session):
    return await mk_user(session, name="Bob")

@pytest_asyncio.fixture
async def librarian(session):
    return await mk_user(session, name="Libby", role=models.Role.LIBRARIAN)
