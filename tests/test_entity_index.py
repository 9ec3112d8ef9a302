import pytest
from conftest import FIXED_NOW, seed

from GridFlow.entity_index import EntityIndex
from GridFlow.errors import EntityNotFoundError, RecordNotFoundError, TransactionError
from GridFlow.metrics import get_counter


def _entity(entity_id: str, **extra) -> dict:
    return {
        "id": entity_id,
        "type": "task",
        "title": entity_id,
        "completed": False,
        "tags": [],
        "people": [],
        "createdAt": "2024-01-01T00:00:00+00:00",
        "updatedAt": "2024-01-01T00:00:00+00:00",
        **extra,
    }


BOARD = {
    "id": "b1",
    "name": "Board",
    "groups": [],
    "rows": [{"id": 1, "name": "r1"}, {"id": 2, "name": "r2"}],
    "columns": [{"id": 1, "key": "todo"}, {"id": 2, "key": "done"}],
}


@pytest.fixture
async def index(store, clock):
    await seed(store, "entities", _entity("A"), _entity("B"), _entity("C"))
    await seed(store, "people", {"id": "P", "name": "Pat"})
    await seed(store, "tags", {"id": "T", "name": "urgent"})
    await seed(store, "boards", BOARD)
    return EntityIndex(store, clock=clock)


async def test_link_twice_creates_one_row_and_one_interaction_update(index, store, clock):
    first = await index.link("A", "P", "tagged")
    second = await index.link("A", "P", "tagged")

    assert first == second
    async with store.transaction("r", ("entityRelationships", "people", "entities")) as tx:
        assert await tx.table("entityRelationships").count() == 1
        person = await tx.table("people").get("P")
        entity = await tx.table("entities").get("A")
    assert person["lastInteraction"] == FIXED_NOW
    assert entity["people"] == ["P"]
    # The clock is read once: only the first link had side effects
    assert clock.calls == 1
    assert get_counter("index.link.created") == 1


async def test_tagged_link_to_tag_mirrors_into_entity_tags(index, store):
    await index.link("A", "T", "tagged")
    async with store.transaction("r", ("entities", "people")) as tx:
        assert (await tx.table("entities").get("A"))["tags"] == ["T"]
        assert "lastInteraction" not in await tx.table("people").get("P")

    assert await index.unlink("A", "T", "tagged") is True
    async with store.transaction("r", ("entities",)) as tx:
        assert (await tx.table("entities").get("A"))["tags"] == []
    assert await index.unlink("A", "T", "tagged") is False


async def test_tagged_link_to_a_person_entity_stamps_it(index, store):
    await seed(store, "entities", _entity("person_1", type="person"))

    await index.link("A", "person_1", "tagged")
    await index.link("A", "B", "tagged")
    async with store.transaction("r", ("entities",)) as tx:
        person = await tx.table("entities").get("person_1")
        entity = await tx.table("entities").get("A")
        task = await tx.table("entities").get("B")
    assert person["lastInteraction"] == FIXED_NOW
    assert entity["people"] == ["person_1"]
    assert "lastInteraction" not in task

    await index.unlink("A", "person_1", "tagged")
    async with store.transaction("r", ("entities",)) as tx:
        assert (await tx.table("entities").get("A"))["people"] == []


async def test_link_requires_an_existing_entity(index):
    with pytest.raises(EntityNotFoundError):
        await index.link("ghost", "P", "tagged")
    # Still a KeyError for callers that treat lookups generically
    with pytest.raises(KeyError):
        await index.link("ghost", "P", "tagged")


async def test_related_to_is_bidirectional_and_filterable(index):
    await index.link("A", "B", "subtask")
    await index.link("C", "A", "blocks")
    await index.link("A", "P", "tagged")

    both = await index.related_to("A")
    assert {r["id"] for r in both} == {
        "rel_A_B_subtask",
        "rel_C_A_blocks",
        "rel_A_P_tagged",
    }
    only = await index.related_to("A", "blocks")
    assert [r["entityId"] for r in only] == ["C"]
    assert [r["id"] for r in await index.related_to("B")] == ["rel_A_B_subtask"]


async def test_set_position_is_an_upsert_per_triple(index, store):
    await index.set_position("A", "b1", "board", 1, "todo", 0)
    moved = await index.set_position("A", "b1", "board", 2, "done", 4)

    assert moved["rowId"] == "2"
    async with store.transaction("r", ("entityPositions",)) as tx:
        rows = await tx.table("entityPositions").to_list()
    assert len(rows) == 1
    assert rows[0]["columnKey"] == "done"
    assert await index.entities_at("b1", "board", 1, "todo") == []
    got = await index.get_position("A", "b1", "board")
    assert got["order"] == 4


async def test_positions_in_other_contexts_coexist(index):
    await index.set_position("A", "b1", "board", 1, "todo")
    await index.set_position("A", "2024-W01", "weekly")
    positions = await index.positions_for("A")
    assert sorted(p["context"] for p in positions) == ["board", "weekly"]
    assert await index.remove_position("A", "2024-W01", "weekly") is True
    assert len(await index.positions_for("A")) == 1


async def test_set_position_validates_context_and_entity(index):
    with pytest.raises(ValueError):
        await index.set_position("A", "b1", "shelf")
    with pytest.raises(EntityNotFoundError):
        await index.set_position("ghost", "b1", "board", 1, "todo")


async def test_entities_at_orders_by_order_then_insertion(index):
    await index.set_position("C", "b1", "board", 1, "todo", 1)
    await index.set_position("B", "b1", "board", 1, "todo", 0)
    await index.set_position("A", "b1", "board", 1, "todo", 1)

    cell = await index.entities_at("b1", "board", "1", "todo")
    assert [e["id"] for e in cell] == ["B", "C", "A"]


async def test_weekly_items_get_sequential_ids(index):
    first = await index.add_weekly_item("A", "2024-W01", "monday")
    second = await index.add_weekly_item("B", "2024-W01", "tuesday")

    assert (first["id"], first["order"]) == ("2024-W01_1", 0)
    assert (second["id"], second["order"]) == ("2024-W01_2", 1)
    assert [i["entityId"] for i in await index.weekly_items("2024-W01")] == ["A", "B"]
    assert await index.remove_weekly_item("2024-W01_1") is True
    assert [i["id"] for i in await index.weekly_items("2024-W01")] == ["2024-W01_2"]


async def test_delete_entity_cascades(index, store):
    await index.set_position("A", "b1", "board", 1, "todo")
    await index.set_position("A", "2024-W01", "weekly")
    await index.add_weekly_item("A", "2024-W01", "monday")
    await index.link("A", "B", "subtask")
    await index.link("C", "A", "blocks")
    await index.link("B", "C", "blocks")

    removed = await index.delete_entity("A")

    assert removed == {"entityPositions": 2, "entityRelationships": 2, "weeklyItems": 1}
    async with store.transaction(
        "r", ("entities", "entityPositions", "entityRelationships", "weeklyItems")
    ) as tx:
        assert await tx.table("entities").get("A") is None
        assert await tx.table("entityPositions").where("entityId").equals("A") == []
        assert await tx.table("entityRelationships").where("entityId").equals("A") == []
        assert await tx.table("entityRelationships").where("relatedId").equals("A") == []
        assert await tx.table("weeklyItems").where("entityId").equals("A") == []
        assert [r["id"] for r in await tx.table("entityRelationships").to_list()] == ["rel_B_C_blocks"]


async def test_delete_entity_missing_raises(index):
    with pytest.raises(EntityNotFoundError):
        await index.delete_entity("ghost")


async def test_delete_row_and_column_cascade_positions(index, store):
    await index.set_position("A", "b1", "board", 1, "todo")
    await index.set_position("B", "b1", "board", 2, "todo")
    await index.set_position("C", "b1", "board", 2, "done")

    assert await index.delete_row("b1", 1) == 1
    assert await index.delete_column("b1", "done") == 1

    async with store.transaction("r", ("boards", "entityPositions")) as tx:
        board = await tx.table("boards").get("b1")
        left = await tx.table("entityPositions").to_list()
    assert [r["id"] for r in board["rows"]] == [2]
    assert [c["key"] for c in board["columns"]] == ["todo"]
    assert [p["entityId"] for p in left] == ["B"]

    with pytest.raises(RecordNotFoundError):
        await index.delete_row("nope", 1)


async def test_mutations_compose_into_a_caller_transaction(index, store):
    with pytest.raises(RuntimeError):
        async with store.transaction(
            "rw", ("entities", "entityPositions", "entityRelationships", "people", "tags")
        ) as tx:
            await index.set_position("A", "b1", "board", 1, "todo", tx=tx)
            await index.link("A", "B", "subtask", tx=tx)
            raise RuntimeError("abort")

    assert await index.get_position("A", "b1", "board") is None
    assert await index.related_to("A") == []


async def test_caller_transaction_must_cover_the_operation(index, store):
    async with store.transaction("r", ("entities", "entityPositions")) as tx:
        with pytest.raises(TransactionError):
            await index.set_position("A", "b1", "board", 1, "todo", tx=tx)
    async with store.transaction("rw", ("entityPositions",)) as tx:
        with pytest.raises(TransactionError):
            await index.set_position("A", "b1", "board", 1, "todo", tx=tx)
