import pytest
from conftest import seed

from GridFlow.entity_index import EntityIndex
from GridFlow.errors import RecoveryTargetError
from GridFlow.metrics import get_counter
from GridFlow.orphans import OrphanRecovery


def _entity(entity_id: str, created: str) -> dict:
    return {"id": entity_id, "type": "note", "title": entity_id, "createdAt": created}


@pytest.fixture
async def populated(store):
    await seed(
        store,
        "entities",
        _entity("placed", "2024-01-01T00:00:00+00:00"),
        _entity("weekly", "2024-01-02T00:00:00+00:00"),
        _entity("collected", "2024-01-03T00:00:00+00:00"),
        _entity("late", "2024-03-01T00:00:00+00:00"),
        _entity("early", "2024-02-01T00:00:00+00:00"),
        _entity("tagged_only", "2024-02-15T00:00:00+00:00"),
    )
    await seed(
        store,
        "boards",
        {
            "id": "b1",
            "name": "Board",
            "rows": [{"id": 7, "name": "first"}, {"id": 8, "name": "second"}],
            "columns": [{"id": 1, "key": "todo"}, {"id": 2, "key": "done"}],
        },
        {"id": "empty", "name": "Empty", "rows": [], "columns": [{"id": 1, "key": "todo"}]},
    )
    index = EntityIndex(store)
    await index.set_position("placed", "b1", "board", 7, "todo", 3)
    await index.add_weekly_item("weekly", "2024-W01", "monday")
    await index.link("collected", "col_1", "collection")
    await index.link("tagged_only", "someone", "tagged")
    return store


async def test_find_orphans_uses_the_global_predicate(populated):
    orphans = await OrphanRecovery(populated).find_orphans("b1")
    # A tagged relationship does not place an entity
    assert [e["id"] for e in orphans] == ["early", "tagged_only", "late"]


async def test_recover_appends_to_first_cell_in_creation_order(populated):
    recovery = OrphanRecovery(populated)
    report = await recovery.recover("b1")

    assert report.recovered_count == 3
    assert report.placement_location == {"boardId": "b1", "rowId": "7", "columnKey": "todo"}
    assert report.entity_ids == ["early", "tagged_only", "late"]

    cell = await EntityIndex(populated).entities_at("b1", "board", "7", "todo")
    assert [e["id"] for e in cell] == ["placed", "early", "tagged_only", "late"]
    assert get_counter("orphans.recovered") == 3


async def test_recover_converges(populated):
    recovery = OrphanRecovery(populated)
    assert (await recovery.recover("b1")).recovered_count == 3
    second = await recovery.recover("b1")
    assert second.recovered_count == 0
    assert second.placement_location is None
    assert await recovery.find_orphans() == []


async def test_recover_needs_a_complete_target(populated):
    recovery = OrphanRecovery(populated)
    with pytest.raises(RecoveryTargetError):
        await recovery.recover("missing")
    with pytest.raises(RecoveryTargetError):
        await recovery.recover("empty")
    # Nothing was placed by the failed attempts
    assert len(await recovery.find_orphans()) == 3


async def test_recover_with_no_orphans_ignores_target(store):
    report = await OrphanRecovery(store).recover("does-not-exist")
    assert report.recovered_count == 0
