"""
Database layer — async SQLite via SQLAlchemy 2.0 + aiosqlite.

Provides:
    • Async engine and session factory
    • Base model for ORM entities (scheduler_jobs, weather_history)

Usage:
    from skycast.app.core.database import Base, async_session_factory

    class WeatherHistoryRow(Base):
        __tablename__ = "weather_history"
        id = mapped_column(Integer, primary_key=True)

    async with async_session_factory() as session:
        rows = (await session.execute(select(WeatherHistoryRow))).scalars().all()

Repositories take a session factory instead of importing the module-level
one, so tests can point them at a throwaway database file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from skycast.app.core.config import settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def _ensure_sqlite_directory(url) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return
    database = parsed.database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


def make_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """Create an async engine for ``url`` (defaults to DATABASE_URL)."""
    return create_async_engine(
        url or settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO if echo is None else echo,
        future=True,
    )


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# ── Engine ──
engine = make_engine()

# ── Session Factory ──
async_session_factory = make_session_factory(engine)


# ── Lifecycle ──
async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create all tables (schema is small and additive; no migration tool)."""
    # Import models so their tables are registered on Base.metadata
    from skycast.app.history import repository  # noqa: F401
    from skycast.app.scheduler import storage  # noqa: F401

    bind = bind or engine
    _ensure_sqlite_directory(bind.url)
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db(bind: Optional[AsyncEngine] = None) -> None:
    """Dispose engine connections."""
    await (bind or engine).dispose()
    logger.info("Database connections closed")
