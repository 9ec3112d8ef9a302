"""Atomicity and serialization of import runs.

Failures are injected inside the Writing state; the store must look exactly
as it did before the run. Runs against one store are serialized by a lock
per store name and event loop.
"""

import asyncio
import weakref

import pytest
from conftest import FIXED_NOW, seed
from sqlalchemy.exc import OperationalError
from test_import_pipeline import current_snapshot

from GridFlow import importer as importer_mod
from GridFlow.errors import ImportInProgressError, TransactionError
from GridFlow.importer import ImportCoordinator, import_snapshot
from GridFlow.metrics import get_counter
from GridFlow.store import Collection

PRE_EXISTING = {
    "id": "pre",
    "type": "task",
    "title": "before the import",
    "createdAt": FIXED_NOW,
    "updatedAt": FIXED_NOW,
}


async def _snapshot_of_store(store) -> dict:
    names = ("entities", "boards", "entityPositions", "entityRelationships", "weeklyItems", "metadata")
    async with store.transaction("r", names) as tx:
        return {n: await tx.table(n).to_list() for n in names}


async def test_backend_failure_mid_write_rolls_back_everything(store, settings, clock, monkeypatch):
    await seed(store, "entities", PRE_EXISTING)
    before = await _snapshot_of_store(store)

    real_bulk_put = Collection.bulk_put

    async def _failing_bulk_put(self, records):
        if self.name == "weeklyItems":
            raise OperationalError("INSERT INTO weekly_items", {}, Exception("disk I/O error"))
        return await real_bulk_put(self, records)

    monkeypatch.setattr(Collection, "bulk_put", _failing_bulk_put)

    coordinator = ImportCoordinator(store, settings, clock=clock)
    with pytest.raises(TransactionError):
        await coordinator.run(current_snapshot())

    assert await _snapshot_of_store(store) == before
    assert get_counter("importer.rollback") == 1
    assert get_counter("importer.rollback.writing") == 1
    assert get_counter("importer.completed") == 0


async def test_failure_while_reconciling_rolls_back_the_write(store, settings, clock, monkeypatch):
    await seed(store, "entities", PRE_EXISTING)
    before = await _snapshot_of_store(store)

    async def _boom(self, board_id, *, tx=None):
        raise RuntimeError("placement crashed")

    monkeypatch.setattr(importer_mod.OrphanRecovery, "recover", _boom)

    with pytest.raises(TransactionError) as exc_info:
        await import_snapshot(current_snapshot(), store, settings=settings, clock=clock)

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert await _snapshot_of_store(store) == before


async def test_replace_is_undone_by_a_failed_write(store, settings, clock, monkeypatch):
    await seed(store, "entities", PRE_EXISTING)

    async def _boom(self, *a, **k):
        raise RuntimeError("late failure")

    monkeypatch.setattr(importer_mod.OrphanRecovery, "recover", _boom)
    with pytest.raises(TransactionError):
        await import_snapshot(current_snapshot(), store, replace=True, settings=settings, clock=clock)

    data = await _snapshot_of_store(store)
    assert [e["id"] for e in data["entities"]] == ["pre"]


async def test_reject_policy_refuses_a_second_import(store, settings, clock):
    reject = settings.model_copy(update={"import_concurrency": "reject"})
    lock = importer_mod._store_lock(store.name)

    async with lock:
        with pytest.raises(ImportInProgressError):
            await ImportCoordinator(store, reject, clock=clock).run(current_snapshot())

    assert get_counter("importer.rejected") == 1
    assert get_counter("importer.started") == 0


async def test_queue_policy_waits_for_the_running_import(store, settings, clock):
    lock = importer_mod._store_lock(store.name)

    await lock.acquire()
    try:
        task = asyncio.create_task(
            ImportCoordinator(store, settings, clock=clock).run(current_snapshot())
        )
        await asyncio.sleep(0.05)
        assert not task.done()
        assert get_counter("importer.started") == 0
    finally:
        lock.release()

    stats = await task
    assert stats.state == "Done"


async def test_concurrent_imports_serialize_and_never_collide(store, settings, clock):
    def v1(title):
        return {"rows": [{"id": 1, "cards": {"todo": [{"title": title}]}}], "columns": [{"id": 1, "key": "todo"}]}

    results = await asyncio.gather(
        import_snapshot(v1("one"), store, settings=settings, clock=clock),
        import_snapshot(v1("two"), store, settings=settings, clock=clock),
        import_snapshot(v1("three"), store, settings=settings, clock=clock),
    )
    assert [r.state for r in results] == ["Done", "Done", "Done"]

    async with store.transaction("r", ("entities",)) as tx:
        entities = await tx.table("entities").to_list()
    assert sorted(e["id"] for e in entities) == ["task_1", "task_2", "task_3"]
    assert sorted(e["title"] for e in entities) == ["one", "three", "two"]


async def test_store_locks_are_shared_per_name_within_a_loop():
    first = importer_mod._store_lock("alpha")
    assert importer_mod._store_lock("alpha") is first
    assert importer_mod._store_lock("beta") is not first
    assert isinstance(importer_mod._locks, weakref.WeakKeyDictionary)
    assert importer_mod._locks[asyncio.get_running_loop()]["alpha"] is first

    async def _from_other_loop():
        return importer_mod._store_lock("alpha")

    assert await asyncio.to_thread(asyncio.run, _from_other_loop()) is not first


class _EventRecorder:
    def __init__(self):
        self.events = []

    def info(self, event, **kw):
        self.events.append((event, kw))

    debug = warning = error = info


async def test_every_state_transition_is_logged(store, settings, clock, monkeypatch):
    recorder = _EventRecorder()
    monkeypatch.setattr(importer_mod, "log", recorder)

    await ImportCoordinator(store, settings, clock=clock).run(current_snapshot())

    states = [kw["state"] for event, kw in recorder.events if event == "importer.state"]
    assert states == ["Detecting", "Migrating", "Validating", "Writing", "Reconciling", "Done"]
