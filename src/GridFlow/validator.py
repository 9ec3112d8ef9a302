# validator.py

"""Structural validation with auto-repair.

Repairs run first, on a deep copy, and each one records a fix string. Checks
then run on the repaired copy and sort problems into two tiers:

* ``StructuralIssue`` (error): the record cannot be stored as-is. Any error
  makes the verdict invalid and the importer refuses to write.
* ``ReferentialWarning``: dangling or duplicate references. The offending
  record is dropped (or kept, where harmless) and import proceeds.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError

from GridFlow.ids import Clock, utc_now_iso
from GridFlow.schemas import (
    CONTEXTS,
    DEFAULT_COLUMNS,
    ENTITY_TYPES,
    PRIORITIES,
    BoardRecord,
    EntityRecord,
    IntegrityReport,
    PositionRecord,
    ReferentialWarning,
    RelationshipRecord,
    StructuralIssue,
    ValidationResult,
    WeeklyItemRecord,
    position_id,
    relationship_id,
)
from GridFlow.versions import detect_version

log = structlog.get_logger()

_MAP_CONTAINERS = ("entities", "boards", "weeklyPlans")
_LIST_CONTAINERS = (
    "people",
    "tags",
    "collections",
    "templates",
    "entityPositions",
    "relationships",
)

HEALTHY_WARNING_LIMIT = 10
LARGE_DATASET_ENTITIES = 1000


def _dicts(value: Any) -> list[dict[str, Any]]:
    return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []


def _valid_iso(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return False
    return True


class _Run:
    """Accumulator for one validation pass."""

    def __init__(self, clock: Clock):
        self.clock = clock
        self.errors: list[StructuralIssue] = []
        self.warnings: list[ReferentialWarning] = []
        self.fixes: list[str] = []
        self._now: str | None = None

    def now(self) -> str:
        # One timestamp per run so repaired records agree with each other
        if self._now is None:
            self._now = self.clock()
        return self._now

    def error(self, code: str, message: str, location: str | None = None) -> None:
        self.errors.append(StructuralIssue(code=code, message=message, location=location))

    def warn(self, code: str, message: str, location: str | None = None) -> None:
        self.warnings.append(ReferentialWarning(code=code, message=message, location=location))

    def fix(self, message: str) -> None:
        self.fixes.append(message)

    def pydantic_errors(self, exc: ValidationError, location: str) -> None:
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ()))
            self.error("invalid_field", f"{loc}: {err.get('msg')}", f"{location}.{loc}" if loc else location)

    def invalid_record(self, exc: ValidationError, kind: str, location: str) -> None:
        err = exc.errors()[0]
        loc = ".".join(str(p) for p in err.get("loc", ()))
        self.warn("invalid_record", f"{kind} {loc}: {err.get('msg')}; dropped", location)


class StructuralValidator:
    def __init__(self, *, clock: Clock | None = None):
        self.clock: Clock = clock or utc_now_iso

    def validate(self, snapshot: Any, *, known_entity_ids: Iterable[str] = ()) -> ValidationResult:
        """Repair and check a copy of ``snapshot``.

        ``known_entity_ids`` are entities that exist outside the snapshot (in
        the target store); references to them are not dangling.
        """
        run = _Run(self.clock)
        if not isinstance(snapshot, dict):
            run.error("snapshot_type", f"snapshot is {type(snapshot).__name__}, not an object")
            return self._result(run, {}, {})
        data = copy.deepcopy(snapshot)

        self._containers(data, run)
        entities = self._entities(data, run)
        boards = self._boards(data, run)
        self._current_board(data, run)
        named = {
            name: self._named_records(data, name, run)
            for name in ("people", "tags", "collections", "templates")
        }
        self._entity_references(entities, named, run)
        refs = set(entities) | {str(i) for i in known_entity_ids}
        self._positions(data, refs, boards, run)
        self._relationships(data, refs, named, run)
        self._weekly(data, refs, run)

        stats = {
            "entities": len(entities),
            "boards": len(boards),
            "people": len(named["people"]),
            "tags": len(named["tags"]),
            "collections": len(named["collections"]),
            "templates": len(named["templates"]),
            "entityPositions": len(data.get("entityPositions") or []),
            "relationships": len(data.get("relationships") or []),
            "weeklyItems": sum(
                len(p.get("items") or []) for p in (data.get("weeklyPlans") or {}).values()
            ),
        }
        return self._result(run, data, stats)

    def _result(self, run: _Run, data: dict[str, Any], stats: dict[str, int]) -> ValidationResult:
        result = ValidationResult(
            is_valid=not run.errors,
            errors=run.errors,
            warnings=run.warnings,
            fixes=run.fixes,
            stats=stats,
            snapshot=data,
        )
        for w in run.warnings:
            log.info("validator.warning", code=w.code, location=w.location, detail=w.message)
        log.info(
            "validator.completed",
            is_valid=result.is_valid,
            errors=len(run.errors),
            warnings=len(run.warnings),
            fixes=len(run.fixes),
        )
        return result

    # -- containers ---------------------------------------------------------

    def _containers(self, data: dict[str, Any], run: _Run) -> None:
        for name in _MAP_CONTAINERS:
            value = data.get(name)
            if value is None:
                data[name] = {}
                run.fix(f"added missing {name}")
            elif not isinstance(value, dict):
                run.error("container_type", f"{name} must be an object keyed by id", name)
                data[name] = {}
        for name in _LIST_CONTAINERS:
            value = data.get(name)
            if value is None:
                data[name] = []
                run.fix(f"added missing {name}")
            elif not isinstance(value, list):
                run.error("container_type", f"{name} must be a list", name)
                data[name] = []

    # -- entities -----------------------------------------------------------

    def _entities(self, data: dict[str, Any], run: _Run) -> dict[str, dict[str, Any]]:
        entities: dict[str, dict[str, Any]] = data["entities"]
        for key, entity in list(entities.items()):
            where = f"entities.{key}"
            if not isinstance(entity, dict):
                run.error("record_type", "entity is not an object", where)
                del entities[key]
                continue
            if entity.get("id") in (None, ""):
                entity["id"] = key
                run.fix(f"{where}: id set from key")
            elif entity["id"] != key:
                run.warn("entity_id_mismatch", f"id {entity['id']!r} differs from key; key kept", where)
                entity["id"] = key
            defaults: list[tuple[str, Callable[[], Any]]] = [
                ("type", lambda: "task"),
                ("title", lambda: "Untitled"),
                ("content", lambda: ""),
                ("completed", lambda: False),
                ("tags", list),
                ("people", list),
                ("createdAt", run.now),
            ]
            for field, make in defaults:
                if entity.get(field) is None or (field == "title" and entity[field] == ""):
                    entity[field] = make()
                    run.fix(f"{where}: {field} defaulted")
            if entity.get("updatedAt") is None:
                entity["updatedAt"] = entity["createdAt"]
                run.fix(f"{where}: updatedAt defaulted")

            try:
                EntityRecord.model_validate(entity)
            except ValidationError as exc:
                run.pydantic_errors(exc, where)

            if entity.get("type") not in ENTITY_TYPES:
                run.warn("unknown_type", f"unknown entity type {entity.get('type')!r}", where)
            if entity.get("priority") is not None and entity["priority"] not in PRIORITIES:
                run.warn("unknown_priority", f"unknown priority {entity['priority']!r}", where)
        return entities

    def _entity_references(
        self,
        entities: dict[str, dict[str, Any]],
        named: dict[str, dict[str, dict[str, Any]]],
        run: _Run,
    ) -> None:
        tag_refs = set(named["tags"]) | {
            str(t.get("name")) for t in named["tags"].values() if t.get("name")
        }
        person_refs = set(named["people"])
        for key, entity in entities.items():
            for tag in entity.get("tags") if isinstance(entity.get("tags"), list) else []:
                if str(tag) not in tag_refs:
                    run.warn("unknown_tag", f"tag {tag!r} is not defined", f"entities.{key}")
            for person in entity.get("people") if isinstance(entity.get("people"), list) else []:
                if str(person) not in person_refs:
                    run.warn("unknown_person", f"person {person!r} is not defined", f"entities.{key}")

    # -- boards -------------------------------------------------------------

    def _boards(self, data: dict[str, Any], run: _Run) -> dict[str, dict[str, Any]]:
        boards: dict[str, dict[str, Any]] = data["boards"]
        for key, board in list(boards.items()):
            where = f"boards.{key}"
            if not isinstance(board, dict):
                run.error("record_type", "board is not an object", where)
                del boards[key]
                continue
            if board.get("id") in (None, ""):
                board["id"] = key
                run.fix(f"{where}: id set from key")
            if not board.get("name"):
                board["name"] = "Untitled Board"
                run.fix(f"{where}: name defaulted")
            for field in ("groups", "rows"):
                if board.get(field) is None:
                    board[field] = []
                    run.fix(f"{where}: {field} defaulted")
            if board.get("columns") is None:
                board["columns"] = [dict(c) for c in DEFAULT_COLUMNS]
                run.fix(f"{where}: default columns added")

            try:
                BoardRecord.model_validate(board)
            except ValidationError as exc:
                run.pydantic_errors(exc, where)
                continue

            group_ids = {str(g.get("id")) for g in board["groups"]}
            for row in board["rows"]:
                gid = row.get("groupId")
                if gid is not None and str(gid) not in group_ids:
                    run.warn(
                        "dangling_group",
                        f"row {row.get('id')!r} references missing group {gid!r}",
                        where,
                    )
        return boards

    def _current_board(self, data: dict[str, Any], run: _Run) -> None:
        boards = data["boards"]
        current = data.get("currentBoardId")
        if boards and (current is None or str(current) not in boards):
            first = next(iter(boards))
            run.warn(
                "unknown_current_board",
                f"currentBoardId {current!r} is not a board; using {first!r}",
                "currentBoardId",
            )
            data["currentBoardId"] = first

    # -- people / tags / collections / templates ----------------------------

    def _named_records(
        self, data: dict[str, Any], name: str, run: _Run
    ) -> dict[str, dict[str, Any]]:
        kept: list[dict[str, Any]] = []
        by_id: dict[str, dict[str, Any]] = {}
        for idx, rec in enumerate(data[name]):
            where = f"{name}[{idx}]"
            if not isinstance(rec, dict) or rec.get("id") in (None, ""):
                run.warn("missing_id", f"{name} record without id dropped", where)
                continue
            if name != "templates" and not rec.get("name"):
                rec["name"] = "Unnamed"
                run.fix(f"{where}: name defaulted")
            kept.append(rec)
            by_id[str(rec["id"])] = rec
        data[name] = kept
        return by_id

    # -- positions ----------------------------------------------------------

    def _positions(
        self,
        data: dict[str, Any],
        entities: set[str],
        boards: dict[str, dict[str, Any]],
        run: _Run,
    ) -> None:
        kept: dict[str, dict[str, Any]] = {}
        for idx, pos in enumerate(data["entityPositions"]):
            where = f"entityPositions[{idx}]"
            if not isinstance(pos, dict):
                run.warn("record_type", "position is not an object; dropped", where)
                continue
            entity_id, board_id, context = pos.get("entityId"), pos.get("boardId"), pos.get("context")
            if context not in CONTEXTS:
                run.warn("invalid_context", f"invalid context {context!r}; dropped", where)
                continue
            if entity_id is None or str(entity_id) not in entities:
                run.warn("dangling_position", f"unknown entity {entity_id!r}; dropped", where)
                continue
            if board_id is None:
                run.warn("dangling_position", "position without boardId; dropped", where)
                continue
            entity_id, board_id = str(entity_id), str(board_id)
            if context == "board":
                board = boards.get(board_id)
                if board is None:
                    run.warn("unknown_board", f"unknown board {board_id!r}; dropped", where)
                    continue
                row_ids = {str(r.get("id")) for r in _dicts(board.get("rows"))}
                column_keys = {
                    str(c.get("key")) for c in _dicts(board.get("columns"))
                }
                if str(pos.get("rowId")) not in row_ids or str(pos.get("columnKey")) not in column_keys:
                    run.warn(
                        "unknown_cell",
                        f"cell {pos.get('rowId')!r}/{pos.get('columnKey')!r} not on board {board_id!r}; dropped",
                        where,
                    )
                    continue
            pid = position_id(entity_id, board_id, context)
            if pos.get("id") != pid:
                run.fix(f"{where}: id recomputed as {pid!r}")
            if pos.get("rowId") is not None and not isinstance(pos["rowId"], str):
                pos["rowId"] = str(pos["rowId"])
                run.fix(f"{where}: rowId stringified")
            if not isinstance(pos.get("order"), int) or isinstance(pos.get("order"), bool):
                pos["order"] = idx
                run.fix(f"{where}: order set to {idx}")
            pos.update(id=pid, entityId=entity_id, boardId=board_id)
            try:
                PositionRecord.model_validate(pos)
            except ValidationError as exc:
                run.invalid_record(exc, "position", where)
                continue
            if pid in kept:
                run.warn("duplicate_position", f"duplicate position {pid!r}; last kept", where)
                del kept[pid]
            kept[pid] = pos
        data["entityPositions"] = list(kept.values())

    # -- relationships ------------------------------------------------------

    def _relationships(
        self,
        data: dict[str, Any],
        entities: set[str],
        named: dict[str, dict[str, dict[str, Any]]],
        run: _Run,
    ) -> None:
        targets = set(entities) | set(named["people"]) | set(named["tags"]) | set(named["collections"])
        kept: dict[str, dict[str, Any]] = {}
        for idx, rel in enumerate(data["relationships"]):
            where = f"relationships[{idx}]"
            if not isinstance(rel, dict):
                run.warn("record_type", "relationship is not an object; dropped", where)
                continue
            entity_id, related_id, rtype = (
                rel.get("entityId"),
                rel.get("relatedId"),
                rel.get("relationshipType"),
            )
            if not rtype:
                run.warn("dangling_relationship", "relationship without type; dropped", where)
                continue
            if entity_id is None or str(entity_id) not in entities:
                run.warn("dangling_relationship", f"unknown entity {entity_id!r}; dropped", where)
                continue
            if related_id is None or str(related_id) not in targets:
                run.warn("dangling_relationship", f"unknown related id {related_id!r}; dropped", where)
                continue
            rid = relationship_id(str(entity_id), str(related_id), str(rtype))
            if rel.get("id") in (None, ""):
                run.fix(f"{where}: id set to {rid!r}")
                rel["id"] = rid
            if rel.get("createdAt") is None:
                rel["createdAt"] = run.now()
                run.fix(f"{where}: createdAt defaulted")
            elif not _valid_iso(rel["createdAt"]):
                run.error("invalid_date", f"unparsable createdAt {rel['createdAt']!r}", where)
            rel.update(entityId=str(entity_id), relatedId=str(related_id))
            try:
                RelationshipRecord.model_validate(rel)
            except ValidationError as exc:
                run.invalid_record(exc, "relationship", where)
                continue
            if rel["id"] in kept:
                run.warn("duplicate_relationship", f"duplicate relationship {rel['id']!r} removed", where)
                continue
            kept[rel["id"]] = rel
        data["relationships"] = list(kept.values())

    # -- weekly -------------------------------------------------------------

    def _weekly(self, data: dict[str, Any], entities: set[str], run: _Run) -> None:
        plans: dict[str, Any] = data["weeklyPlans"]
        for week_key, plan in list(plans.items()):
            where = f"weeklyPlans.{week_key}"
            if not isinstance(plan, dict):
                run.error("record_type", "weekly plan is not an object", where)
                del plans[week_key]
                continue
            if plan.get("weekKey") != week_key:
                plan["weekKey"] = week_key
                run.fix(f"{where}: weekKey set")
            items = plan.get("items")
            if items is None:
                items = plan["items"] = []
                run.fix(f"{where}: items defaulted")
            elif not isinstance(items, list):
                run.error("container_type", "items must be a list", where)
                plan["items"] = []
                continue
            kept = []
            seen: set[str] = set()
            for n, item in enumerate(items):
                loc = f"{where}.items[{n}]"
                if not isinstance(item, dict):
                    run.warn("record_type", "weekly item is not an object; dropped", loc)
                    continue
                if item.get("entityId") is None or str(item["entityId"]) not in entities:
                    run.warn("dangling_weekly_item", f"unknown entity {item.get('entityId')!r}; dropped", loc)
                    continue
                if item.get("id") in (None, ""):
                    item["id"] = f"{week_key}_{n + 1}"
                    run.fix(f"{loc}: id set to {item['id']!r}")
                elif not isinstance(item["id"], str):
                    item["id"] = str(item["id"])
                    run.fix(f"{loc}: id stringified")
                if str(item["id"]) in seen:
                    run.warn("duplicate_weekly_item", f"duplicate weekly item {item['id']!r} removed", loc)
                    continue
                seen.add(str(item["id"]))
                if item.get("weekKey") != week_key:
                    item["weekKey"] = week_key
                if not isinstance(item.get("order"), int) or isinstance(item.get("order"), bool):
                    item["order"] = n
                    run.fix(f"{loc}: order set to {n}")
                item["entityId"] = str(item["entityId"])
                try:
                    WeeklyItemRecord.model_validate(item)
                except ValidationError as exc:
                    run.invalid_record(exc, "weekly item", loc)
                    continue
                kept.append(item)
            plan["items"] = kept


_default_validator = StructuralValidator()


def validate(
    snapshot: Any, *, clock: Clock | None = None, known_entity_ids: Iterable[str] = ()
) -> ValidationResult:
    """Repair and check ``snapshot``; ``is_valid`` iff no errors remain."""
    v = StructuralValidator(clock=clock) if clock is not None else _default_validator
    return v.validate(snapshot, known_entity_ids=known_entity_ids)


def integrity_report(snapshot: Any, *, clock: Clock | None = None) -> IntegrityReport:
    """Validation result plus recommendations and a health summary."""
    clock = clock or utc_now_iso
    result = validate(snapshot, clock=clock)
    recommendations: list[str] = []
    if result.errors:
        recommendations.append("Fix critical errors before importing data")
    if len(result.warnings) > HEALTHY_WARNING_LIMIT:
        recommendations.append("Consider cleaning up data to resolve warnings")
    if result.stats.get("entities", 0) > LARGE_DATASET_ENTITIES:
        recommendations.append("Large dataset detected - consider incremental import")
    if result.fixes:
        recommendations.append("Review automatically applied fixes")
    version = snapshot.get("version") if isinstance(snapshot, dict) else None
    return IntegrityReport(
        timestamp=clock(),
        data_version=str(version) if version else detect_version(snapshot),
        validation=result,
        recommendations=recommendations,
        summary={
            "total_errors": len(result.errors),
            "total_warnings": len(result.warnings),
            "total_fixes": len(result.fixes),
            "is_healthy": result.is_valid and len(result.warnings) < HEALTHY_WARNING_LIMIT,
        },
    )


__all__ = ["StructuralValidator", "integrity_report", "validate"]
