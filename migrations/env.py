"""Alembic migration environment.

Reads DATABASE_URL from the project's .env file so that store migrations run
against the intended database instead of the default SQLite file.
"""

import os
import pathlib
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import create_engine

from GridFlow import models as _models  # noqa: F401  (registers tables)
from GridFlow.db import Base

_ROOT = pathlib.Path(__file__).resolve().parents[1]
_ENV_PATH = _ROOT / ".env"
_ENV_LOCAL_PATH = _ROOT / ".env.local"

if _ENV_PATH.exists():
    load_dotenv(dotenv_path=_ENV_PATH)
else:
    load_dotenv()

# Local override wins
if _ENV_LOCAL_PATH.exists():
    load_dotenv(dotenv_path=_ENV_LOCAL_PATH, override=True)


config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
target_metadata = Base.metadata


def _sync_db_url() -> str:
    """Return a sync URL for Alembic; the store itself runs on aiosqlite."""
    url = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./gridflow.sqlite3")
    return url.replace("+aiosqlite", "")


def run_migrations_offline() -> None:
    context.configure(url=_sync_db_url(), target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(_sync_db_url())
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
