# store.py

"""Keyed record store over SQLAlchemy async sessions.

Every read and write goes through ``Store.transaction(mode, collections)``,
which opens one session, yields a ``Transaction`` and commits only when the
body completes. Collections are addressed by their record names
(``entities``, ``entityPositions``, ...) and return plain ``dict`` records.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any, Literal, TypeVar

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from GridFlow import db as _db
from GridFlow.config import Settings, load_settings
from GridFlow.errors import RetryableIOError, TransactionError
from GridFlow.metrics import inc_counter
from GridFlow.models import ALL_COLLECTIONS, COLLECTION_MODELS, RecordMixin, coerce_index_value

log = structlog.get_logger()

Mode = Literal["r", "rw"]
T = TypeVar("T")

_IN_CHUNK = 500


async def _flush_retry(s: AsyncSession, attempts: int = 5, delay: float = 0.05) -> None:
    """Retry session.flush() on transient SQLite 'database is locked' errors.

    Exponential backoff: delay * 2^i between attempts.
    """
    for i in range(attempts):
        try:
            await s.flush()
            return
        except OperationalError as e:  # pragma: no cover - timing dependent
            msg = str(e).lower()
            if "database is locked" in msg or "database is busy" in msg:
                if i == attempts - 1:
                    raise
                log.warning("store.flush.retry", attempt=i + 1)
                await asyncio.sleep(delay * (2**i))
                continue
            raise


class WhereClause:
    """``collection.where(field)``: equality lookups on one indexed field."""

    def __init__(self, collection: Collection, field: str):
        self._collection = collection
        self._field = field
        try:
            self._column = collection.model.column_for(field)
        except KeyError as exc:
            raise TransactionError(str(exc.args[0])) from exc
        self._kind = collection.model.INDEXED[field][1]

    async def equals(self, value: Any) -> list[dict[str, Any]]:
        v = coerce_index_value(value, self._kind)
        cond = self._column.is_(None) if v is None else self._column == v
        return await self._collection._select(cond)

    async def any_of(self, values: Iterable[Any]) -> list[dict[str, Any]]:
        vs = [coerce_index_value(v, self._kind) for v in values]
        vs = [v for v in vs if v is not None]
        if not vs:
            return []
        out: list[dict[str, Any]] = []
        for i in range(0, len(vs), _IN_CHUNK):
            out.extend(await self._collection._select(self._column.in_(vs[i : i + _IN_CHUNK])))
        return out

    async def count(self, value: Any) -> int:
        v = coerce_index_value(value, self._kind)
        cond = self._column.is_(None) if v is None else self._column == v
        q = await self._collection.session.execute(
            select(func.count()).select_from(self._collection.model).where(cond)
        )
        return int(q.scalar_one())


class Collection:
    def __init__(self, tx: Transaction, name: str, model: type[RecordMixin]):
        self._tx = tx
        self.name = name
        self.model = model

    @property
    def session(self) -> AsyncSession:
        return self._tx.session

    def _order_by(self) -> list[Any]:
        attrs = self.model.ORDER_BY or (self.model.INDEXED[self.model.KEY_FIELD][0],)
        return [getattr(self.model, a) for a in attrs]

    def _key_of(self, record: Mapping[str, Any]) -> str:
        key = record.get(self.model.KEY_FIELD)
        if key is None or key == "":
            raise TransactionError(f"{self.name}: record without {self.model.KEY_FIELD!r}")
        return str(key)

    async def _select(self, *conds: Any) -> list[dict[str, Any]]:
        stmt = select(self.model)
        if conds:
            stmt = stmt.where(*conds)
        q = await self.session.execute(stmt.order_by(*self._order_by()))
        return [row.to_record() for row in q.scalars().all()]

    async def _load(self, key: str) -> RecordMixin | None:
        q = await self.session.execute(select(self.model).where(self.model.key_column() == key))
        return q.scalar_one_or_none()

    async def get(self, key: Any) -> dict[str, Any] | None:
        obj = await self._load(str(key))
        return obj.to_record() if obj is not None else None

    async def put(self, record: Mapping[str, Any]) -> str:
        """Insert or replace one record by key."""
        self._tx.check_write(self.name)
        key = self._key_of(record)
        obj = await self._load(key)
        if obj is None:
            obj = self.model()
            self.session.add(obj)
        obj.apply_record(record)
        await _flush_retry(self.session)
        return key

    async def bulk_put(self, records: Sequence[Mapping[str, Any]]) -> int:
        self._tx.check_write(self.name)
        if not records:
            return 0
        keys = [self._key_of(r) for r in records]
        existing: dict[str, RecordMixin] = {}
        key_col = self.model.key_column()
        unique = list(dict.fromkeys(keys))
        for i in range(0, len(unique), _IN_CHUNK):
            q = await self.session.execute(
                select(self.model).where(key_col.in_(unique[i : i + _IN_CHUNK]))
            )
            for obj in q.scalars().all():
                existing[str(getattr(obj, self.model.INDEXED[self.model.KEY_FIELD][0]))] = obj
        for key, record in zip(keys, records):
            obj = existing.get(key)
            if obj is None:
                obj = self.model()
                self.session.add(obj)
                existing[key] = obj
            obj.apply_record(record)
        await _flush_retry(self.session)
        return len(records)

    async def delete(self, key: Any) -> bool:
        self._tx.check_write(self.name)
        res = await self.session.execute(
            delete(self.model).where(self.model.key_column() == str(key))
        )
        return (res.rowcount or 0) > 0

    def where(self, field: str) -> WhereClause:
        return WhereClause(self, field)

    async def query(self, criteria: Mapping[str, Any]) -> list[dict[str, Any]]:
        """AND of equality matches over indexed fields."""
        conds = []
        for field, value in criteria.items():
            clause = WhereClause(self, field)
            v = coerce_index_value(value, clause._kind)
            conds.append(clause._column.is_(None) if v is None else clause._column == v)
        return await self._select(*conds)

    async def to_list(self) -> list[dict[str, Any]]:
        return await self._select()

    async def count(self) -> int:
        q = await self.session.execute(select(func.count()).select_from(self.model))
        return int(q.scalar_one())

    async def delete_where(self, field: str, value: Any) -> int:
        self._tx.check_write(self.name)
        clause = WhereClause(self, field)
        v = coerce_index_value(value, clause._kind)
        res = await self.session.execute(delete(self.model).where(clause._column == v))
        return res.rowcount or 0

    async def clear(self) -> int:
        self._tx.check_write(self.name)
        res = await self.session.execute(delete(self.model))
        return res.rowcount or 0


class Transaction:
    def __init__(self, session: AsyncSession, mode: Mode, collections: Sequence[str]):
        self.session = session
        self.mode = mode
        self.collections = frozenset(collections)

    def table(self, name: str) -> Collection:
        if name not in self.collections:
            raise TransactionError(f"collection {name!r} is not part of this transaction")
        return Collection(self, name, COLLECTION_MODELS[name])

    def covers(self, names: Iterable[str]) -> bool:
        return all(n in self.collections for n in names)

    def check_write(self, name: str) -> None:
        if self.mode != "rw":
            raise TransactionError(f"write to {name!r} inside a read-only transaction")


class Store:
    """A named store bound to a sessionmaker.

    ``name`` identifies the store for import serialization; two ``Store``
    objects with the same name share one import lock.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession] | None = None,
        *,
        name: str = "default",
        max_retries: int | None = None,
        retry_delay: float | None = None,
        settings: Settings | None = None,
    ):
        cfg = settings or load_settings()
        self._sessionmaker = sessionmaker
        self.name = name
        self.max_retries = cfg.store_open_max_retries if max_retries is None else max_retries
        self.retry_delay = (
            cfg.store_open_retry_delay_seconds if retry_delay is None else retry_delay
        )

    async def _connect(self) -> AsyncSession:
        if self._sessionmaker is None:
            await _db.ensure_schema()
            sm = _db.get_sessionmaker()
        else:
            sm = self._sessionmaker
        session = sm()
        try:
            await session.connection()
        except BaseException:
            await session.close()
            raise
        return session

    async def open_session(self) -> AsyncSession:
        """Open a connected session, retrying transient failures."""
        attempts = self.max_retries + 1
        last: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await self._connect()
            except (OperationalError, OSError) as exc:
                last = exc
                inc_counter("store.open.retry")
                log.warning(
                    "store.open.retry",
                    store=self.name,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(exc),
                )
                if attempt < attempts:
                    await asyncio.sleep(self.retry_delay * (2 ** (attempt - 1)))
        inc_counter("store.open.failed")
        log.error("store.open.failed", store=self.name, attempts=attempts)
        raise RetryableIOError(f"store {self.name!r} unavailable", attempts=attempts) from last

    @asynccontextmanager
    async def transaction(
        self, mode: Mode = "rw", collections: Iterable[str] | None = None
    ) -> AsyncIterator[Transaction]:
        if mode not in ("r", "rw"):
            raise ValueError(f"unknown transaction mode: {mode!r}")
        names = list(ALL_COLLECTIONS if collections is None else collections)
        unknown = [n for n in names if n not in COLLECTION_MODELS]
        if unknown:
            raise TransactionError(f"unknown collection(s): {', '.join(unknown)}")

        session = await self.open_session()
        tx = Transaction(session, mode, names)
        try:
            yield tx
            if mode == "rw":
                await _flush_retry(session)
                await session.commit()
            else:
                await session.rollback()
        except SQLAlchemyError as exc:
            await session.rollback()
            inc_counter("store.transaction.rollback")
            log.error("store.transaction.error", store=self.name, mode=mode, exc_info=True)
            raise TransactionError(f"transaction aborted: {exc}") from exc
        except BaseException:
            await session.rollback()
            inc_counter("store.transaction.rollback")
            raise
        finally:
            await session.close()

    async def run(
        self,
        mode: Mode,
        collections: Iterable[str] | None,
        fn: Callable[[Transaction], Awaitable[T]],
    ) -> T:
        """Await ``fn(tx)`` inside one transaction and return its result."""
        async with self.transaction(mode, collections) as tx:
            return await fn(tx)


@asynccontextmanager
async def scoped(
    store: Store, tx: Transaction | None, mode: Mode, collections: Sequence[str]
) -> AsyncIterator[Transaction]:
    """Reuse ``tx`` when the caller already holds one, else open a new one."""
    if tx is not None:
        if not tx.covers(collections):
            missing = sorted(set(collections) - set(tx.collections))
            raise TransactionError(f"transaction does not cover: {', '.join(missing)}")
        if mode == "rw" and tx.mode != "rw":
            raise TransactionError("read-write operation inside a read-only transaction")
        yield tx
        return
    async with store.transaction(mode, collections) as own:
        yield own


__all__ = ["Collection", "Mode", "Store", "Transaction", "WhereClause", "scoped"]
