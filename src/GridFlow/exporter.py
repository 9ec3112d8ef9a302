"""Snapshot export and (de)serialization helpers.

``export_snapshot`` reads the whole store in one read transaction and emits
the current snapshot shape; feeding the result back through the importer
reproduces the same entities, positions and relationships.
"""

from __future__ import annotations

import hashlib
from typing import Any

import orjson

from GridFlow.models import ALL_COLLECTIONS
from GridFlow.store import Store
from GridFlow.versions import CURRENT_VERSION, EXPORT_FORMAT_DEXIE, NormalizedSnapshot

# Fields excluded from the digest; they legitimately change on re-import
_VOLATILE_FIELDS = ("updatedAt",)


async def export_snapshot(store: Store | None = None) -> NormalizedSnapshot:
    store = store or Store()
    async with store.transaction("r", ALL_COLLECTIONS) as tx:
        records = {name: await tx.table(name).to_list() for name in ALL_COLLECTIONS}

    meta = {m["key"]: m.get("value") for m in records["metadata"]}
    boards = {b["id"]: b for b in records["boards"]}

    weekly: dict[str, dict[str, Any]] = {}
    for plan in records["weeklyPlans"]:
        weekly[plan["weekKey"]] = {**plan, "items": []}
    for item in records["weeklyItems"]:
        plan = weekly.setdefault(item["weekKey"], {"weekKey": item["weekKey"], "items": []})
        plan["items"].append(item)

    return {
        "version": CURRENT_VERSION,
        "exportFormat": EXPORT_FORMAT_DEXIE,
        "currentBoardId": meta.get("currentBoardId") or next(iter(boards), "default"),
        "entities": {e["id"]: e for e in records["entities"]},
        "boards": boards,
        "people": records["people"],
        "tags": records["tags"],
        "collections": records["collections"],
        "templates": records["templates"],
        "entityPositions": records["entityPositions"],
        "relationships": records["entityRelationships"],
        "weeklyPlans": weekly,
    }


def dumps_snapshot(snapshot: Any, *, indent: bool = False) -> bytes:
    option = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS
    if indent:
        option |= orjson.OPT_INDENT_2
    return orjson.dumps(snapshot, option=option)


def loads_snapshot(data: bytes | str) -> Any:
    return orjson.loads(data)


def _strip(record: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in record.items() if k not in _VOLATILE_FIELDS}


def snapshot_digest(snapshot: NormalizedSnapshot) -> str:
    """SHA-256 over entities, positions and relationships, ``updatedAt`` excluded."""
    entities = snapshot.get("entities") or {}
    payload = {
        "entities": sorted((_strip(e) for e in entities.values()), key=lambda e: str(e.get("id"))),
        "entityPositions": sorted(
            (_strip(p) for p in snapshot.get("entityPositions") or []),
            key=lambda p: str(p.get("id")),
        ),
        "relationships": sorted(
            (_strip(r) for r in snapshot.get("relationships") or []),
            key=lambda r: str(r.get("id")),
        ),
    }
    return hashlib.sha256(dumps_snapshot(payload)).hexdigest()


__all__ = ["dumps_snapshot", "export_snapshot", "loads_snapshot", "snapshot_digest"]
