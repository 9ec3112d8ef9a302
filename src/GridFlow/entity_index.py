# entity_index.py

"""Positional and relational index over stored entities.

Positions place one entity at one location per ``(entityId, boardId,
context)``; Relationships link two records and are queried from either end.
Every mutation runs in one store transaction, or inside the caller's
transaction when ``tx`` is passed.
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from GridFlow.errors import EntityNotFoundError, RecordNotFoundError
from GridFlow.ids import Clock, utc_now_iso
from GridFlow.metrics import inc_counter
from GridFlow.schemas import CONTEXTS, position_id, relationship_id
from GridFlow.store import Store, Transaction, scoped

log = structlog.get_logger()

_POSITION_SCOPE = ("entities", "entityPositions")
_LINK_SCOPE = ("entities", "entityRelationships", "people", "tags")
_WEEKLY_SCOPE = ("entities", "weeklyPlans", "weeklyItems")
_DELETE_SCOPE = ("entities", "entityPositions", "entityRelationships", "weeklyItems")
_BOARD_SCOPE = ("boards", "entityPositions")

TAGGED = "tagged"


class EntityIndex:
    def __init__(self, store: Store, *, clock: Clock | None = None):
        self.store = store
        self.clock: Clock = clock or utc_now_iso

    async def _require_entity(self, tx: Transaction, entity_id: str) -> dict[str, Any]:
        entity = await tx.table("entities").get(entity_id)
        if entity is None:
            raise EntityNotFoundError(f"entity {entity_id!r} not found")
        return entity

    # -- positions ----------------------------------------------------------

    async def set_position(
        self,
        entity_id: str,
        board_id: str,
        context: str,
        row_id: Any = None,
        column_key: str | None = None,
        order: int = 0,
        *,
        tx: Transaction | None = None,
    ) -> dict[str, Any]:
        """Upsert the single Position for ``(entity_id, board_id, context)``."""
        if context not in CONTEXTS:
            raise ValueError(f"unknown context {context!r}")
        async with scoped(self.store, tx, "rw", _POSITION_SCOPE) as t:
            await self._require_entity(t, entity_id)
            record = {
                "id": position_id(entity_id, board_id, context),
                "entityId": entity_id,
                "boardId": board_id,
                "context": context,
                "rowId": None if row_id is None else str(row_id),
                "columnKey": column_key,
                "order": int(order),
            }
            await t.table("entityPositions").put(record)
        log.debug("index.position.set", entity_id=entity_id, board_id=board_id, context=context)
        return record

    async def get_position(
        self, entity_id: str, board_id: str, context: str, *, tx: Transaction | None = None
    ) -> dict[str, Any] | None:
        async with scoped(self.store, tx, "r", ("entityPositions",)) as t:
            return await t.table("entityPositions").get(position_id(entity_id, board_id, context))

    async def remove_position(
        self, entity_id: str, board_id: str, context: str, *, tx: Transaction | None = None
    ) -> bool:
        async with scoped(self.store, tx, "rw", ("entityPositions",)) as t:
            return await t.table("entityPositions").delete(position_id(entity_id, board_id, context))

    async def positions_for(
        self, entity_id: str, *, tx: Transaction | None = None
    ) -> list[dict[str, Any]]:
        async with scoped(self.store, tx, "r", ("entityPositions",)) as t:
            return await t.table("entityPositions").where("entityId").equals(entity_id)

    async def entities_at(
        self,
        board_id: str,
        context: str,
        row_id: Any = None,
        column_key: str | None = None,
        *,
        tx: Transaction | None = None,
    ) -> list[dict[str, Any]]:
        """Entities in one cell, by ``order`` then insertion."""
        async with scoped(self.store, tx, "r", _POSITION_SCOPE) as t:
            positions = await t.table("entityPositions").query(
                {"boardId": board_id, "context": context, "rowId": row_id, "columnKey": column_key}
            )
            ids = [p["entityId"] for p in positions]
            found = {e["id"]: e for e in await t.table("entities").where("id").any_of(ids)}
        return [found[i] for i in ids if i in found]

    # -- relationships ------------------------------------------------------

    async def link(
        self,
        entity_id: str,
        related_id: str,
        relationship_type: str,
        *,
        tx: Transaction | None = None,
    ) -> dict[str, Any]:
        """Create the relationship unless it already exists.

        A new ``tagged`` link to a person (a ``people`` record or an entity of
        type ``person``) stamps the person's ``lastInteraction``; tagged links
        to people and tags are mirrored in the entity's ``people``/``tags``
        lists. Re-linking is a no-op.
        """
        rid = relationship_id(entity_id, related_id, relationship_type)
        async with scoped(self.store, tx, "rw", _LINK_SCOPE) as t:
            entity = await self._require_entity(t, entity_id)
            rels = t.table("entityRelationships")
            existing = await rels.get(rid)
            if existing is not None:
                return existing

            now = self.clock()
            record = {
                "id": rid,
                "entityId": entity_id,
                "relatedId": related_id,
                "relationshipType": relationship_type,
                "createdAt": now,
            }
            await rels.put(record)

            if relationship_type == TAGGED:
                person = await t.table("people").get(related_id)
                if person is not None:
                    person["lastInteraction"] = now
                    await t.table("people").put(person)
                    await self._mirror(t, entity, "people", related_id, add=True, now=now)
                elif await t.table("tags").get(related_id) is not None:
                    await self._mirror(t, entity, "tags", related_id, add=True, now=now)
                elif related_id != entity_id:
                    other = await t.table("entities").get(related_id)
                    if other is not None and other.get("type") == "person":
                        other["lastInteraction"] = now
                        await t.table("entities").put(other)
                        await self._mirror(t, entity, "people", related_id, add=True, now=now)
        inc_counter("index.link.created")
        log.debug("index.link", entity_id=entity_id, related_id=related_id, type=relationship_type)
        return record

    async def unlink(
        self,
        entity_id: str,
        related_id: str,
        relationship_type: str,
        *,
        tx: Transaction | None = None,
    ) -> bool:
        rid = relationship_id(entity_id, related_id, relationship_type)
        async with scoped(self.store, tx, "rw", _LINK_SCOPE) as t:
            removed = await t.table("entityRelationships").delete(rid)
            if removed and relationship_type == TAGGED:
                entity = await t.table("entities").get(entity_id)
                if entity is not None:
                    now = self.clock()
                    for field in ("people", "tags"):
                        await self._mirror(t, entity, field, related_id, add=False, now=now)
        return removed

    async def _mirror(
        self,
        t: Transaction,
        entity: dict[str, Any],
        field: str,
        related_id: str,
        *,
        add: bool,
        now: str,
    ) -> None:
        current = list(entity.get(field) or [])
        if add and related_id not in current:
            current.append(related_id)
        elif not add and related_id in current:
            current.remove(related_id)
        else:
            return
        entity[field] = current
        entity["updatedAt"] = now
        await t.table("entities").put(entity)

    async def related_to(
        self,
        entity_id: str,
        relationship_type: str | None = None,
        *,
        tx: Transaction | None = None,
    ) -> list[dict[str, Any]]:
        """Relationships with ``entity_id`` at either end."""
        async with scoped(self.store, tx, "r", ("entityRelationships",)) as t:
            rels = t.table("entityRelationships")
            rows = await rels.where("entityId").equals(entity_id)
            rows += await rels.where("relatedId").equals(entity_id)
        seen: dict[str, dict[str, Any]] = {}
        for r in rows:
            if relationship_type is None or r.get("relationshipType") == relationship_type:
                seen.setdefault(r["id"], r)
        return sorted(seen.values(), key=lambda r: (str(r.get("createdAt") or ""), r["id"]))

    # -- weekly items -------------------------------------------------------

    async def add_weekly_item(
        self,
        entity_id: str,
        week_key: str,
        day: str | None,
        order: int | None = None,
        *,
        item_id: str | None = None,
        tx: Transaction | None = None,
    ) -> dict[str, Any]:
        async with scoped(self.store, tx, "rw", _WEEKLY_SCOPE) as t:
            await self._require_entity(t, entity_id)
            plans = t.table("weeklyPlans")
            if await plans.get(week_key) is None:
                await plans.put({"weekKey": week_key})
            existing = await t.table("weeklyItems").where("weekKey").equals(week_key)
            if item_id is None:
                pattern = re.compile(rf"^{re.escape(week_key)}_(\d+)$")
                taken = [int(m.group(1)) for i in existing if (m := pattern.match(str(i["id"])))]
                item_id = f"{week_key}_{max(taken, default=0) + 1}"
            if order is None:
                order = max((int(i.get("order") or 0) for i in existing), default=-1) + 1
            record = {
                "id": item_id,
                "weekKey": week_key,
                "entityId": entity_id,
                "day": day,
                "order": order,
            }
            await t.table("weeklyItems").put(record)
        return record

    async def remove_weekly_item(self, item_id: str, *, tx: Transaction | None = None) -> bool:
        async with scoped(self.store, tx, "rw", ("weeklyItems",)) as t:
            return await t.table("weeklyItems").delete(item_id)

    async def weekly_items(
        self, week_key: str, *, tx: Transaction | None = None
    ) -> list[dict[str, Any]]:
        async with scoped(self.store, tx, "r", ("weeklyItems",)) as t:
            return await t.table("weeklyItems").where("weekKey").equals(week_key)

    # -- cascades -----------------------------------------------------------

    async def delete_entity(
        self, entity_id: str, *, tx: Transaction | None = None
    ) -> dict[str, int]:
        """Delete an entity and every Position, Relationship and WeeklyItem
        referencing it, atomically."""
        async with scoped(self.store, tx, "rw", _DELETE_SCOPE) as t:
            await self._require_entity(t, entity_id)
            rels = t.table("entityRelationships")
            removed = {
                "entityPositions": await t.table("entityPositions").delete_where("entityId", entity_id),
                "entityRelationships": await rels.delete_where("entityId", entity_id)
                + await rels.delete_where("relatedId", entity_id),
                "weeklyItems": await t.table("weeklyItems").delete_where("entityId", entity_id),
            }
            await t.table("entities").delete(entity_id)
        inc_counter("index.entity.deleted")
        log.info("index.entity.deleted", entity_id=entity_id, **removed)
        return removed

    async def _delete_structure(
        self,
        board_id: str,
        field: str,
        match: Any,
        position_field: str,
        tx: Transaction | None,
    ) -> int:
        async with scoped(self.store, tx, "rw", _BOARD_SCOPE) as t:
            boards = t.table("boards")
            board = await boards.get(board_id)
            if board is None:
                raise RecordNotFoundError(f"board {board_id!r} not found")
            attr = "id" if field == "rows" else "key"
            board[field] = [
                el
                for el in board.get(field) or []
                if not (isinstance(el, dict) and str(el.get(attr)) == str(match))
            ]
            await boards.put(board)
            positions = t.table("entityPositions")
            doomed = await positions.query(
                {"boardId": board_id, "context": "board", position_field: match}
            )
            for p in doomed:
                await positions.delete(p["id"])
        return len(doomed)

    async def delete_row(
        self, board_id: str, row_id: Any, *, tx: Transaction | None = None
    ) -> int:
        """Remove a row and cascade-delete positions addressed to it."""
        return await self._delete_structure(board_id, "rows", row_id, "rowId", tx)

    async def delete_column(
        self, board_id: str, column_key: str, *, tx: Transaction | None = None
    ) -> int:
        return await self._delete_structure(board_id, "columns", column_key, "columnKey", tx)


__all__ = ["EntityIndex", "TAGGED"]
