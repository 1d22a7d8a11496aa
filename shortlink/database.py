"""PostgreSQL engine and sessions for links and clicks.

Two kinds of session users share one pool:

- request handlers get a session per request through ``get_db``;
- click workers open a short-lived session per store call through
  ``async_session`` (see ``SQLClickStore``), since they outlive any request.

Pool sizing comes from ``DB_POOL_SIZE`` / ``DB_MAX_OVERFLOW`` and connections
are recycled after ``DB_POOL_RECYCLE_SECONDS``. ``init_db`` creates the
``links`` and ``clicks`` tables at startup; ``close_db`` disposes the pool
after the click workers have stopped.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlink.config import get_settings

__all__ = ["Base", "engine", "async_session", "get_db", "init_db", "close_db"]

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
    pool_pre_ping=True,
)

# Workers read ids off committed rows, so nothing expires on commit.
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def init_db() -> None:
    from shortlink import models  # noqa: F401  registers the tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
