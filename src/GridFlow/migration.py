"""Versioned migration chain: legacy snapshots -> the 7.0 normalized shape.

The chain is an explicit tuple of ``MigrationStep`` units, one per pair of
consecutive versions, folded left from the detected version. Transforms are
total: structurally odd input is repaired or dropped with a warning recorded
on the ``MigrationContext`` and never raises out of ``migrate``.

Step summary:

* 1.0 -> 2.0  single board wrapped into ``boards["default"]``
* 2.0 -> 3.0  ``templates`` and ``weeklyPlans`` containers
* 3.0 -> 4.0  legacy relationship maps, ``collections`` and ``tags``
* 4.0 -> 5.0  nested cards and weekly content extracted into flat entities
* 5.0 -> 6.0  people/tags/collections as arrays
* 6.0 -> 7.0  cell references become ``entityPositions``
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from GridFlow.ids import Clock, IdGenerator, SequentialIdGenerator, utc_now_iso
from GridFlow.schemas import (
    DEFAULT_COLUMNS,
    ENTITY_TYPES,
    ReferentialWarning,
    position_id,
    relationship_id,
)
from GridFlow.versions import (
    CURRENT_VERSION,
    EXPORT_FORMAT_DEXIE,
    EXPORT_FORMAT_INDEXEDDB,
    VERSIONS,
    NormalizedSnapshot,
    detect_version,
    has_unknown_version,
    version_index,
)

log = structlog.get_logger()

_BUCKET_TYPES = {
    "tasks": "task",
    "notes": "note",
    "checklists": "checklist",
    "projects": "project",
}

# Legacy relationship maps: name -> (relationship type, key side is the entity)
_LEGACY_RELATIONSHIP_MAPS = {
    "entityTasks": ("subtask", True),
    "entityTags": ("tagged", True),
    "collectionEntities": ("collection", False),
}

_TOP_LEVEL_UI_FIELDS = ("settings", "templateLibrary", "exportedAt", "exportedFrom")


@dataclass
class MigrationContext:
    """Injected capabilities plus the warnings accumulated during one run."""

    ids: IdGenerator = field(default_factory=SequentialIdGenerator)
    clock: Clock = utc_now_iso
    warnings: list[ReferentialWarning] = field(default_factory=list)
    source_version: str | None = None

    def warn(self, code: str, message: str, location: str | None = None) -> None:
        self.warnings.append(ReferentialWarning(code=code, message=message, location=location))
        log.warning("migration.warning", code=code, detail=message, location=location)


Transform = Callable[[dict[str, Any], MigrationContext], dict[str, Any]]


@dataclass(frozen=True)
class MigrationStep:
    source: str
    target: str
    transform: Transform


# -----------------------------
# Shape helpers
# -----------------------------


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return list(value.values())
    return []


def _keyed_records(value: Any, ctx: MigrationContext, where: str) -> list[dict[str, Any]]:
    """Arrays pass through; id-keyed maps become arrays with ids filled in."""
    out: list[dict[str, Any]] = []
    if isinstance(value, dict):
        items: Iterable[tuple[Any, Any]] = value.items()
    elif isinstance(value, list):
        items = ((None, v) for v in value)
    else:
        if value is not None:
            ctx.warn("container_type", f"{where} is not a list or map; ignored", where)
        return out
    for key, rec in items:
        if not isinstance(rec, dict):
            ctx.warn("record_type", f"non-object record in {where} dropped", where)
            continue
        rec = dict(rec)
        if rec.get("id") in (None, "") and key is not None:
            rec["id"] = key
        out.append(rec)
    return out


def _drop_counters(record: dict[str, Any]) -> None:
    for key in [k for k in record if k.startswith("next") and k.endswith("Id")]:
        record.pop(key)


def _infer_card_type(card: dict[str, Any]) -> str:
    explicit = card.get("type")
    if explicit in ENTITY_TYPES:
        return explicit
    if card.get("subtasks"):
        return "task"
    if isinstance(card.get("items"), list) or isinstance(card.get("checklist"), list):
        return "checklist"
    return "task"


_CARD_ONLY_FIELDS = (
    "id",
    "description",
    "name",
    "text",
    "checklist",
    "cardId",
    "entityId",
    "weekKey",
    "day",
    "order",
    "addedAt",
)


def _entity_from_card(
    card: dict[str, Any], ctx: MigrationContext, data: dict[str, Any], *, etype: str | None = None
) -> str:
    """Create a fresh entity from an embedded card object; return its id."""
    etype = etype or _infer_card_type(card)
    entity_id = ctx.ids.next_id(etype)
    created = card.get("createdAt") or ctx.clock()
    entity: dict[str, Any] = {
        k: v for k, v in card.items() if k not in _CARD_ONLY_FIELDS and k != "type"
    }
    entity.update(
        {
            "id": entity_id,
            "type": etype,
            "title": card.get("title") or card.get("name") or card.get("text") or "Untitled",
            "content": card.get("content") or card.get("description") or "",
            "completed": bool(card.get("completed", False)),
            "tags": list(card.get("tags") or []) if isinstance(card.get("tags"), list) else [],
            "people": list(card.get("people") or []) if isinstance(card.get("people"), list) else [],
            "createdAt": created,
            "updatedAt": card.get("updatedAt") or created,
        }
    )
    checklist = card.get("checklist")
    if etype == "checklist" and isinstance(checklist, list) and "items" not in entity:
        entity["items"] = [
            {"text": str(i.get("text", "")), "completed": bool(i.get("completed", False))}
            for i in checklist
            if isinstance(i, dict)
        ]
    subtasks = card.get("subtasks")
    if isinstance(subtasks, list):
        entity["subtasks"] = [
            {"text": str(s.get("text") or s.get("title") or ""), "completed": bool(s.get("completed", False))}
            for s in subtasks
            if isinstance(s, dict)
        ]
    data.setdefault("entities", {})[entity_id] = entity
    return entity_id


def _add_relationship(
    data: dict[str, Any], entity_id: str, related_id: str, rtype: str, created_at: str
) -> None:
    rels = data.setdefault("relationships", [])
    if not isinstance(rels, list):
        return
    rid = relationship_id(entity_id, related_id, rtype)
    if any(r.get("id") == rid for r in rels if isinstance(r, dict)):
        return
    rels.append(
        {
            "id": rid,
            "entityId": entity_id,
            "relatedId": related_id,
            "relationshipType": rtype,
            "createdAt": created_at,
        }
    )


def _strip_type_prefix(ref: Any) -> str:
    """Legacy tag maps key entities as ``"<type>:<id>"``."""
    ref = str(ref)
    head, sep, tail = ref.partition(":")
    return tail if sep and head in ENTITY_TYPES else ref


def _legacy_relationships(
    maps: dict[str, Any],
    card_map: dict[str, str],
    entities: dict[str, Any],
    ctx: MigrationContext,
) -> list[dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    now = ctx.clock()
    for name, (rtype, key_is_entity) in _LEGACY_RELATIONSHIP_MAPS.items():
        table = maps.get(name)
        if not isinstance(table, dict):
            continue
        for key, targets in table.items():
            for target in _as_list(targets) if not isinstance(targets, str) else [targets]:
                a, b = _strip_type_prefix(key), _strip_type_prefix(target)
                a, b = card_map.get(a, a), card_map.get(b, b)
                entity_id, related_id = (a, b) if key_is_entity else (b, a)
                if entity_id not in entities:
                    ctx.warn(
                        "dangling_relationship",
                        f"{name}: unknown entity {entity_id!r} dropped",
                        f"relationships.{name}",
                    )
                    continue
                rid = relationship_id(entity_id, related_id, rtype)
                out[rid] = {
                    "id": rid,
                    "entityId": entity_id,
                    "relatedId": related_id,
                    "relationshipType": rtype,
                    "createdAt": now,
                }
    return list(out.values())


# -----------------------------
# Transforms
# -----------------------------


def v1_to_v2(data: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    columns = data.get("columns")
    board = {
        "id": "default",
        "name": data.get("name") or "Main Board",
        "groups": data.get("groups") if isinstance(data.get("groups"), list) else [],
        "rows": data.get("rows") if isinstance(data.get("rows"), list) else [],
        "columns": columns
        if isinstance(columns, list) and columns
        else [dict(c) for c in DEFAULT_COLUMNS],
        "createdAt": data.get("createdAt") or ctx.clock(),
    }
    if "rows" in data and not isinstance(data["rows"], list):
        ctx.warn("container_type", "rows is not a list; ignored", "rows")
    return {"version": "2.0", "currentBoardId": "default", "boards": {"default": board}}


def v2_to_v3(data: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    boards = data.get("boards")
    if isinstance(boards, list):
        boards = {str(b.get("id")): b for b in boards if isinstance(b, dict) and b.get("id")}
    elif not isinstance(boards, dict):
        if boards is not None:
            ctx.warn("container_type", "boards is not a map; ignored", "boards")
        boards = {}
    data["boards"] = boards
    data["templates"] = _keyed_records(data.get("templates"), ctx, "templates")
    if not isinstance(data.get("weeklyPlans"), dict):
        data["weeklyPlans"] = {}
    data["version"] = "3.0"
    return data


def v3_to_v4(data: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    rels = data.get("relationships")
    if not isinstance(rels, (dict, list)):
        data["relationships"] = {name: {} for name in _LEGACY_RELATIONSHIP_MAPS}
    data.setdefault("collections", {})
    data.setdefault("tags", {})
    if not isinstance(data.get("weeklyPlans"), dict):
        data["weeklyPlans"] = {}
    for week_key, plan in list(data["weeklyPlans"].items()):
        if not isinstance(plan, dict):
            ctx.warn("record_type", "weekly plan is not an object; dropped", f"weeklyPlans.{week_key}")
            del data["weeklyPlans"][week_key]
            continue
        if not isinstance(plan.get("items"), list):
            plan["items"] = []
    data["version"] = "4.0"
    return data


def _flatten_entities(raw: Any, ctx: MigrationContext) -> dict[str, dict[str, Any]]:
    flat: dict[str, dict[str, Any]] = {}
    if not isinstance(raw, dict):
        return flat
    bucketed = any(isinstance(raw.get(b), (dict, list)) for b in _BUCKET_TYPES)
    sources: list[tuple[str | None, Any]]
    if bucketed:
        sources = [(etype, raw.get(bucket)) for bucket, etype in _BUCKET_TYPES.items()]
    else:
        sources = [(None, raw)]
    for etype, bucket in sources:
        items = bucket.items() if isinstance(bucket, dict) else enumerate(_as_list(bucket))
        for key, rec in items:
            if not isinstance(rec, dict):
                ctx.warn("record_type", "non-object entity dropped", f"entities.{key}")
                continue
            rec = dict(rec)
            rec.setdefault("type", etype or "task")
            if not rec.get("title") and (rec.get("text") or rec.get("name")):
                rec["title"] = rec.get("text") or rec.get("name")
            entity_id = str(rec.get("id") or key)
            if entity_id in flat:
                fresh = ctx.ids.next_id(rec["type"] if rec["type"] in ENTITY_TYPES else "task")
                ctx.warn(
                    "duplicate_id",
                    f"entity id {entity_id!r} collides; reassigned to {fresh!r}",
                    f"entities.{entity_id}",
                )
                entity_id = fresh
            rec["id"] = entity_id
            ctx.ids.reserve(entity_id)
            flat[entity_id] = rec
    return flat


def v4_to_v5(data: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    legacy_maps = data.get("relationships") if isinstance(data.get("relationships"), dict) else {}
    data["entities"] = _flatten_entities(data.get("entities"), ctx)
    data["relationships"] = (
        data["relationships"] if isinstance(data.get("relationships"), list) else []
    )
    card_map: dict[str, str] = {}
    for name in ("boards", "weeklyPlans"):
        if not isinstance(data.get(name), dict):
            data[name] = {}

    for board_id, board in data["boards"].items():
        if not isinstance(board, dict):
            continue
        for row in _as_list(board.get("rows")):
            if not isinstance(row, dict) or not isinstance(row.get("cards"), dict):
                continue
            for column_key, cards in row["cards"].items():
                refs: list[str] = []
                for card in _as_list(cards):
                    if isinstance(card, dict):
                        new_id = _entity_from_card(card, ctx, data)
                        if card.get("id") is not None:
                            card_map.setdefault(str(card["id"]), new_id)
                        refs.append(new_id)
                    elif isinstance(card, (str, int)) and not isinstance(card, bool):
                        refs.append(card_map.get(str(card), str(card)))
                    else:
                        ctx.warn(
                            "card_type",
                            "unrecognized card dropped",
                            f"boards.{board_id}.rows.{row.get('id')}.{column_key}",
                        )
                row["cards"][column_key] = refs

    for week_key, plan in data["weeklyPlans"].items():
        if not isinstance(plan, dict):
            continue
        items: list[dict[str, Any]] = []
        for item in _as_list(plan.get("items")):
            if not isinstance(item, dict):
                continue
            ref = item.get("entityId") or item.get("cardId")
            kind = item.get("type")
            entry = {k: v for k, v in item.items() if k in ("id", "day", "completed", "order")}
            if ref is not None and (
                kind not in ("note", "checklist") or str(ref) in data["entities"]
            ):
                entry["entityId"] = card_map.get(str(ref), str(ref))
            elif kind == "note":
                entry["entityId"] = _entity_from_card(
                    {**item, "title": item.get("title") or "Note"}, ctx, data, etype="note"
                )
            elif kind == "checklist":
                entry["entityId"] = _entity_from_card(
                    {**item, "title": item.get("title") or "Checklist"},
                    ctx,
                    data,
                    etype="checklist",
                )
            elif item.get("title") or item.get("content"):
                entry["entityId"] = _entity_from_card(item, ctx, data, etype="note")
            else:
                ctx.warn("empty_weekly_item", "weekly item without content dropped", f"weeklyPlans.{week_key}")
                continue
            items.append(entry)
        plan["items"] = items

    if legacy_maps:
        for rel in _legacy_relationships(legacy_maps, card_map, data["entities"], ctx):
            _add_relationship(
                data, rel["entityId"], rel["relatedId"], rel["relationshipType"], rel["createdAt"]
            )
    data["version"] = "5.0"
    return data


def v5_to_v6(data: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    entities = data.get("entities")
    if isinstance(entities, list):
        data["entities"] = {
            str(e["id"]): e for e in entities if isinstance(e, dict) and e.get("id") is not None
        }
    elif not isinstance(entities, dict):
        data["entities"] = {}
    for name in ("people", "tags", "collections"):
        data[name] = _keyed_records(data.get(name), ctx, name)
    for entity in data["entities"].values():
        if not isinstance(entity, dict):
            continue
        for list_field in ("tags", "people"):
            value = entity.get(list_field)
            if value is None:
                entity[list_field] = []
            elif isinstance(value, (str, int)) and not isinstance(value, bool):
                entity[list_field] = [value]
    data["exportFormat"] = EXPORT_FORMAT_INDEXEDDB
    data["version"] = "6.0"
    return data


def v6_to_v7(data: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    entities = data.setdefault("entities", {})
    boards = data.get("boards")
    if isinstance(boards, list):
        data["boards"] = {str(b.get("id")): b for b in boards if isinstance(b, dict) and b.get("id")}
    elif not isinstance(boards, dict):
        data["boards"] = {}
    positions: dict[str, dict[str, Any]] = {
        p["id"]: p
        for p in _as_list(data.get("entityPositions"))
        if isinstance(p, dict) and p.get("id")
    }

    for board_id, board in data["boards"].items():
        if not isinstance(board, dict):
            continue
        column_keys = {
            str(c.get("key")) for c in _as_list(board.get("columns")) if isinstance(c, dict)
        }
        for row in _as_list(board.get("rows")):
            if not isinstance(row, dict):
                continue
            cells = row.pop("cards", None)
            if not isinstance(cells, dict):
                continue
            if row.get("id") is None:
                ctx.warn("row_without_id", "cards on a row without id dropped", f"boards.{board_id}")
                continue
            where = f"boards.{board_id}.rows.{row.get('id')}"
            for column_key, refs in cells.items():
                if str(column_key) not in column_keys:
                    ctx.warn(
                        "unknown_column",
                        f"cell references missing column {column_key!r}; dropped",
                        where,
                    )
                    continue
                for order, ref in enumerate(_as_list(refs)):
                    if isinstance(ref, dict):
                        ref = _entity_from_card(ref, ctx, data)
                    entity_id = str(ref)
                    if entity_id not in entities:
                        ctx.warn("unknown_entity", f"cell references unknown entity {entity_id!r}; dropped", where)
                        continue
                    pid = position_id(entity_id, str(board_id), "board")
                    if pid in positions:
                        ctx.warn("duplicate_position", f"{entity_id!r} placed twice on board; last kept", where)
                    positions[pid] = {
                        "id": pid,
                        "entityId": entity_id,
                        "boardId": str(board_id),
                        "context": "board",
                        "rowId": str(row.get("id")),
                        "columnKey": str(column_key),
                        "order": order,
                    }
    data["entityPositions"] = list(positions.values())

    weekly = data.get("weeklyPlans") if isinstance(data.get("weeklyPlans"), dict) else {}
    for week_key, plan in weekly.items():
        if not isinstance(plan, dict):
            continue
        items = []
        for n, item in enumerate(_as_list(plan.get("items"))):
            if not isinstance(item, dict):
                continue
            entity_id = item.get("entityId")
            if entity_id is None or str(entity_id) not in entities:
                ctx.warn(
                    "dangling_weekly_item",
                    f"weekly item references unknown entity {entity_id!r}; dropped",
                    f"weeklyPlans.{week_key}",
                )
                continue
            items.append(
                {
                    "id": str(item.get("id") or f"{week_key}_{n + 1}"),
                    "weekKey": str(week_key),
                    "entityId": str(entity_id),
                    "day": item.get("day"),
                    "order": item.get("order") if isinstance(item.get("order"), int) else n,
                }
            )
        plan["items"] = items

    rels = data.get("relationships")
    if isinstance(rels, dict):
        data["relationships"] = _legacy_relationships(rels, {}, entities, ctx)
    data["exportFormat"] = EXPORT_FORMAT_DEXIE
    data["version"] = "7.0"
    return data


DEFAULT_STEPS: tuple[MigrationStep, ...] = (
    MigrationStep("1.0", "2.0", v1_to_v2),
    MigrationStep("2.0", "3.0", v2_to_v3),
    MigrationStep("3.0", "4.0", v3_to_v4),
    MigrationStep("4.0", "5.0", v4_to_v5),
    MigrationStep("5.0", "6.0", v5_to_v6),
    MigrationStep("6.0", "7.0", v6_to_v7),
)


# -----------------------------
# Output normalization
# -----------------------------


def _normalize_board(board_id: str, board: dict[str, Any]) -> dict[str, Any]:
    out = {k: v for k, v in board.items() if k != "settings"}
    _drop_counters(out)
    if out.get("id") in (None, ""):
        out["id"] = board_id
    return out


def normalize(data: dict[str, Any], ctx: MigrationContext) -> NormalizedSnapshot:
    """Project any 7.0-shaped dict onto the output contract. Idempotent."""
    entities: dict[str, dict[str, Any]] = {}
    raw_entities = data.get("entities")
    if isinstance(raw_entities, list):
        raw_entities = {str(e.get("id")): e for e in raw_entities if isinstance(e, dict) and e.get("id")}
    for key, rec in (raw_entities or {}).items() if isinstance(raw_entities, dict) else ():
        if not isinstance(rec, dict):
            ctx.warn("record_type", "non-object entity dropped", f"entities.{key}")
            continue
        rec = dict(rec)
        if rec.get("id") not in (None, "") and str(rec["id"]) != str(key):
            ctx.warn("entity_id_mismatch", f"entity {key!r} carried id {rec['id']!r}; key kept", f"entities.{key}")
        rec["id"] = str(key)
        entities[str(key)] = rec

    boards: dict[str, dict[str, Any]] = {}
    raw_boards = data.get("boards")
    if isinstance(raw_boards, list):
        raw_boards = {str(b.get("id")): b for b in raw_boards if isinstance(b, dict) and b.get("id")}
    for key, board in (raw_boards or {}).items() if isinstance(raw_boards, dict) else ():
        if isinstance(board, dict):
            boards[str(key)] = _normalize_board(str(key), board)

    weekly: dict[str, dict[str, Any]] = {}
    raw_weekly = data.get("weeklyPlans")
    for week_key, plan in (raw_weekly or {}).items() if isinstance(raw_weekly, dict) else ():
        if not isinstance(plan, dict):
            continue
        plan = dict(plan)
        plan["weekKey"] = str(week_key)
        plan["items"] = [i for i in _as_list(plan.get("items")) if isinstance(i, dict)]
        weekly[str(week_key)] = plan

    relationships = data.get("relationships")
    if isinstance(relationships, dict):
        relationships = _legacy_relationships(relationships, {}, entities, ctx)
    relationships = [r for r in _as_list(relationships) if isinstance(r, dict)]

    current = data.get("currentBoardId")
    if current in (None, ""):
        current = next(iter(boards), "default")

    dropped = [k for k in data if k in _TOP_LEVEL_UI_FIELDS or (k.startswith("next") and k.endswith("Id"))]
    if dropped:
        log.debug("migration.fields.dropped", fields=sorted(dropped))

    return {
        "version": CURRENT_VERSION,
        "exportFormat": EXPORT_FORMAT_DEXIE,
        "currentBoardId": str(current),
        "entities": entities,
        "boards": boards,
        "people": _keyed_records(data.get("people"), ctx, "people"),
        "tags": _keyed_records(data.get("tags"), ctx, "tags"),
        "collections": _keyed_records(data.get("collections"), ctx, "collections"),
        "templates": _keyed_records(data.get("templates"), ctx, "templates"),
        "entityPositions": [p for p in _as_list(data.get("entityPositions")) if isinstance(p, dict)],
        "relationships": relationships,
        "weeklyPlans": weekly,
    }


def _reserve_existing_ids(data: dict[str, Any], ids: IdGenerator) -> None:
    entities = data.get("entities")
    if not isinstance(entities, dict):
        return
    for key, rec in entities.items():
        if key in _BUCKET_TYPES and isinstance(rec, (dict, list)):
            for inner_key, inner in (rec.items() if isinstance(rec, dict) else enumerate(rec)):
                ids.reserve(str(inner.get("id") if isinstance(inner, dict) and inner.get("id") else inner_key))
            continue
        ids.reserve(str(key))
        if isinstance(rec, dict) and rec.get("id"):
            ids.reserve(str(rec["id"]))


# -----------------------------
# Chain
# -----------------------------


class MigrationChain:
    """Ordered fold over ``MigrationStep`` units."""

    def __init__(self, steps: tuple[MigrationStep, ...] = DEFAULT_STEPS):
        expected = list(zip(VERSIONS, VERSIONS[1:]))
        actual = [(s.source, s.target) for s in steps]
        if actual != expected:
            raise ValueError(f"migration steps must cover {expected}, got {actual}")
        self.steps = steps

    def steps_from(self, version: str) -> tuple[MigrationStep, ...]:
        return self.steps[version_index(version) :]

    def migrate(self, raw: Any, *, context: MigrationContext | None = None) -> NormalizedSnapshot:
        ctx = context or MigrationContext()
        if not isinstance(raw, dict):
            ctx.warn("not_an_object", f"snapshot is {type(raw).__name__}, not an object")
            raw = {}
        data = copy.deepcopy(raw)

        version = detect_version(data)
        if has_unknown_version(data):
            ctx.warn(
                "unknown_version",
                f"unknown version tag {data.get('version')!r}; detected {version} from structure",
                "version",
            )
        ctx.source_version = version
        _reserve_existing_ids(data, ctx.ids)

        for step in self.steps_from(version):
            try:
                data = step.transform(copy.deepcopy(data), ctx)
            except Exception as exc:
                log.error(
                    "migration.step.failed", source=step.source, target=step.target, exc_info=True
                )
                ctx.warn(
                    "transform_failed",
                    f"{step.source} -> {step.target} failed ({exc}); continuing with unmodified data",
                    step.source,
                )
                continue
            log.debug("migration.step.applied", source=step.source, target=step.target)

        out = normalize(data, ctx)
        log.info(
            "migration.completed",
            source_version=version,
            target_version=CURRENT_VERSION,
            entities=len(out["entities"]),
            boards=len(out["boards"]),
            warnings=len(ctx.warnings),
        )
        return out


_default_chain = MigrationChain()


def migrate(raw: Any, *, context: MigrationContext | None = None) -> NormalizedSnapshot:
    """Migrate ``raw`` (any known version) to the current normalized shape.

    The input is never mutated. Warnings land on ``context.warnings``.
    """
    return _default_chain.migrate(raw, context=context)


__all__ = [
    "DEFAULT_STEPS",
    "MigrationChain",
    "MigrationContext",
    "MigrationStep",
    "migrate",
    "normalize",
]
