"""Async database engine management and transaction scoping."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

# Import models so SQLModel registers them
from blogkit.storage import models as _models  # noqa: F401

_engines: dict[str, AsyncEngine] = {}


def get_engine(database_url: str) -> AsyncEngine:
    """Get or create an async engine for the given database URL."""
    if database_url not in _engines:
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        _engines[database_url] = create_async_engine(database_url, echo=False)
    return _engines[database_url]


async def init_db(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def dispose_engines() -> None:
    for engine in _engines.values():
        await engine.dispose()
    _engines.clear()


def get_session(engine: AsyncEngine) -> AsyncSession:
    """Create a new database session. Loaded rows stay usable after commit."""
    return AsyncSession(engine, expire_on_commit=False)


@asynccontextmanager
async def transaction(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Open a session whose work commits on clean exit and rolls back otherwise."""
    async with get_session(engine) as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
