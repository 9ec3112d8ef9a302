# orphans.py

"""Orphan detection and reattachment.

An entity is an orphan when nothing places it: no Position in any context,
no WeeklyItem and no ``collection`` Relationship. Recovery appends orphans to
the first row x first column of a board, so a second pass finds nothing.
"""

from __future__ import annotations

from typing import Any

import structlog

from GridFlow.errors import RecoveryTargetError
from GridFlow.metrics import inc_counter
from GridFlow.schemas import RecoveryReport, position_id
from GridFlow.store import Store, Transaction, scoped

log = structlog.get_logger()

_SCOPE = ("boards", "entities", "entityPositions", "weeklyItems", "entityRelationships")


def _first(items: Any) -> dict[str, Any] | None:
    for item in items if isinstance(items, list) else []:
        if isinstance(item, dict):
            return item
    return None


class OrphanRecovery:
    def __init__(self, store: Store):
        self.store = store

    async def find_orphans(
        self, board_id: str | None = None, *, tx: Transaction | None = None
    ) -> list[dict[str, Any]]:
        """Entities with no placement anywhere, oldest first.

        ``board_id`` does not narrow the search; membership is global.
        """
        async with scoped(self.store, tx, "r", _SCOPE[1:]) as t:
            placed: set[str] = set()
            for p in await t.table("entityPositions").to_list():
                placed.add(str(p.get("entityId")))
            for w in await t.table("weeklyItems").to_list():
                placed.add(str(w.get("entityId")))
            for r in await t.table("entityRelationships").where("relationshipType").equals(
                "collection"
            ):
                placed.add(str(r.get("entityId")))
            entities = await t.table("entities").to_list()
        orphans = [e for e in entities if str(e.get("id")) not in placed]
        orphans.sort(key=lambda e: (str(e.get("createdAt") or ""), str(e.get("id"))))
        return orphans

    async def _target(self, t: Transaction, board_id: str) -> dict[str, str]:
        board = await t.table("boards").get(board_id)
        if board is None:
            raise RecoveryTargetError(f"board {board_id!r} not found")
        row, column = _first(board.get("rows")), _first(board.get("columns"))
        if row is None or row.get("id") is None:
            raise RecoveryTargetError(f"board {board_id!r} has no rows")
        if column is None or not column.get("key"):
            raise RecoveryTargetError(f"board {board_id!r} has no columns")
        return {"boardId": board_id, "rowId": str(row["id"]), "columnKey": str(column["key"])}

    async def recover(self, board_id: str, *, tx: Transaction | None = None) -> RecoveryReport:
        """Place every orphan into ``board_id``'s first cell in one batch."""
        async with scoped(self.store, tx, "rw", _SCOPE) as t:
            orphans = await self.find_orphans(board_id, tx=t)
            if not orphans:
                return RecoveryReport(recovered_count=0)
            where = await self._target(t, board_id)
            positions = t.table("entityPositions")
            cell = await positions.query({**where, "context": "board"})
            start = max((int(p.get("order") or 0) for p in cell), default=-1) + 1
            records = [
                {
                    "id": position_id(str(e["id"]), board_id, "board"),
                    "entityId": str(e["id"]),
                    "context": "board",
                    **where,
                    "order": start + i,
                }
                for i, e in enumerate(orphans)
            ]
            await positions.bulk_put(records)

        inc_counter("orphans.recovered", len(records))
        log.info("orphans.recovered", count=len(records), **where)
        return RecoveryReport(
            recovered_count=len(records),
            placement_location=where,
            entity_ids=[r["entityId"] for r in records],
        )


__all__ = ["OrphanRecovery"]
