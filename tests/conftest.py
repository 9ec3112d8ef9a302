# tests/conftest.py

import gc
import os
from collections.abc import AsyncIterator

import pytest
import sqlalchemy as sa

# Point the store at a test database before any GridFlow module is imported.
# Default to an in-memory DB for speed; a file-backed SQLite can be selected to
# exercise the connect/flush paths against a real file.
if os.environ.get("GRIDFLOW_TEST_USE_FILE_SQLITE") == "1":
    test_db_path = os.path.abspath(
        os.environ.get("GRIDFLOW_TEST_DB_PATH", "./gridflow_test.sqlite3")
    )
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"
else:
    os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

# One shared connection so concurrent sessions in a test see the same schema
if os.environ.get("GRIDFLOW_SQLITE_STATIC_POOL", "1") != "0":
    os.environ["GRIDFLOW_SQLITE_STATIC_POOL"] = "1"

# config.toml / .env may name another database; override the module constant
# before any engine is created.
import GridFlow.db as _db  # noqa: E402

_db.DATABASE_URL = os.environ["DATABASE_URL"]
_db._engine = None
_db._sessionmaker = None
_db._schema_initialized = False

# Register every table on Base.metadata before create_all
from GridFlow import models as _models  # noqa: F401,E402
from GridFlow.config import Settings  # noqa: E402
from GridFlow.db import Base, get_engine  # noqa: E402
from GridFlow.metrics import reset_counters  # noqa: E402
from GridFlow.store import Store  # noqa: E402

FIXED_NOW = "2024-01-01T00:00:00+00:00"


@pytest.fixture(scope="session", autouse=True)
async def _app_engine_lifecycle() -> AsyncIterator[None]:
    """Create tables on the app engine and dispose it after the session."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    _db._schema_initialized = True
    try:
        yield None
    finally:
        await engine.dispose()
    gc.collect()


@pytest.fixture(autouse=True)
async def _reset_db_per_test() -> AsyncIterator[None]:
    # Recreate the schema so no rows survive between tests
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    reset_counters()
    yield None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=os.environ["DATABASE_URL"],
        store_open_max_retries=2,
        store_open_retry_delay_seconds=0,
        logging_console="NONE",
        logging_file="NONE",
    )


@pytest.fixture
def store(settings: Settings) -> Store:
    return Store(settings=settings)


@pytest.fixture
def clock():
    """A deterministic clock that counts how often it was read."""

    class _Clock:
        def __init__(self) -> None:
            self.calls = 0

        def __call__(self) -> str:
            self.calls += 1
            return FIXED_NOW

    return _Clock()


async def seed(store: Store, collection: str, *records: dict) -> None:
    async with store.transaction("rw", (collection,)) as tx:
        await tx.table(collection).bulk_put(list(records))


async def count_rows(table: str) -> int:
    async with get_engine().connect() as conn:
        q = await conn.execute(sa.text(f"SELECT COUNT(*) FROM {table}"))
        return int(q.scalar_one())
