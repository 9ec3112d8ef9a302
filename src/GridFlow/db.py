# src/GridFlow/db.py
from __future__ import annotations

import os

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from GridFlow.config import load_settings

settings = load_settings()
log = structlog.get_logger()


def _normalize_url(url: str) -> str:
    # Upgrade to async drivers if user supplies sync URLs
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


DATABASE_URL = _normalize_url(settings.database_url)


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None
_schema_initialized: bool = False


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite+aiosqlite://") and (
        ":memory:" in url or "file::memory:?cache=shared" in url
    )


def get_engine() -> AsyncEngine:
    global _engine, _sessionmaker
    if _engine is None:
        kwargs: dict[str, object] = {}
        if DATABASE_URL.startswith("sqlite+aiosqlite://"):
            connect_args: dict[str, object] = {"timeout": 30}
            if "file::memory:?cache=shared" in DATABASE_URL:
                connect_args["uri"] = True
            kwargs.update(connect_args=connect_args)
            # In-memory DBs must share a single connection so the schema persists
            if _is_memory_sqlite(DATABASE_URL) or os.environ.get("GRIDFLOW_SQLITE_STATIC_POOL") == "1":
                kwargs.update(poolclass=StaticPool)

        _engine = create_async_engine(DATABASE_URL, **kwargs)
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)

        url = make_url(DATABASE_URL)
        log.info(
            "db.connection.config",
            backend=url.get_backend_name(),
            database=url.database or "",
            driver=url.drivername,
        )
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if _sessionmaker is None:
        get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def ensure_schema() -> None:
    """Create tables for in-memory SQLite stores.

    File-backed and remote databases are provisioned by Alembic
    (``migrations/``); creating the schema here is idempotent for SQLite.
    """
    global _schema_initialized
    if _schema_initialized:
        return
    if _is_memory_sqlite(DATABASE_URL):
        # Ensure models module is imported so all tables are registered
        from GridFlow import models as _models  # noqa: F401

        engine = get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    _schema_initialized = True


async def dispose_engine() -> None:
    global _engine, _sessionmaker, _schema_initialized
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None
    _schema_initialized = False
