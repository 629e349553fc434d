from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

class Base(DeclarativeBase):
    pass

def make_engine(database_url: str) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
        return create_async_engine(database_url, echo=False, **kwargs)
    return create_async_engine(database_url, echo=False, pool_pre_ping=True, pool_recycle=1800)

def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def init_db(engine: AsyncEngine):
    from lms import models
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
