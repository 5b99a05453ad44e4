from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from carecall.config import DATABASE_URL


def _sync_url(url: str) -> str:
    """Strip the async driver from ``url`` so migrations can use it.

    The record store talks to the database through ``aiosqlite`` or
    ``asyncpg``; the batch, prompt and call-history migrations run on the
    dialect's default synchronous driver instead.
    """

    try:
        parsed = make_url(url)
    except ArgumentError:  # pragma: no cover - malformed URLs pass through
        return url

    dialect, plus, _ = parsed.drivername.partition("+")
    if not plus:
        return url
    return parsed.set(drivername=dialect).render_as_string(hide_password=False)


ASYNC_DATABASE_URL = DATABASE_URL
SYNC_DATABASE_URL = _sync_url(DATABASE_URL)

engine = create_async_engine(ASYNC_DATABASE_URL, echo=False, future=True)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


class Base(DeclarativeBase):
    pass


async def create_tables() -> None:
    # Import for side effects: registers the tables on Base.metadata.
    from carecall.models import tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "DATABASE_URL",
    "ASYNC_DATABASE_URL",
    "SYNC_DATABASE_URL",
    "engine",
    "async_session_maker",
    "create_tables",
    "Base",
]
