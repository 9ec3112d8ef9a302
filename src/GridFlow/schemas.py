# schemas.py

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ENTITY_TYPES: tuple[str, ...] = ("task", "note", "checklist", "project", "person")
CONTEXTS: tuple[str, ...] = ("board", "weekly", "collection")
PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "urgent")

DEFAULT_COLUMNS: tuple[dict[str, Any], ...] = (
    {"id": 1, "name": "To Do", "key": "todo"},
    {"id": 2, "name": "In Progress", "key": "inprogress"},
    {"id": 3, "name": "Done", "key": "done"},
)

RelationshipType = str  # "tagged", "collection", "subtask", free-form otherwise


def position_id(entity_id: str, board_id: str, context: str) -> str:
    """Deterministic Position key: one row per (entity, board, context)."""
    return f"{entity_id}_{board_id}_{context}"


def relationship_id(entity_id: str, related_id: str, relationship_type: str) -> str:
    return f"rel_{entity_id}_{related_id}_{relationship_type}"


def _parse_iso(value: str) -> datetime:
    # fromisoformat accepts a trailing "Z" from 3.11 on
    return datetime.fromisoformat(value)


# -----------------------------
# Store records
# -----------------------------


class EntityRecord(BaseModel):
    """Type contract for a stored entity; unknown fields are preserved."""

    id: str
    type: str
    title: str
    content: str = ""
    completed: bool = False
    priority: str | None = None
    dueDate: str | None = None
    tags: list[str | int] = Field(default_factory=list)
    people: list[str] = Field(default_factory=list)
    createdAt: str
    updatedAt: str

    model_config = ConfigDict(extra="allow", strict=True)

    @field_validator("createdAt", "updatedAt")
    @classmethod
    def _valid_timestamp(cls, v: str) -> str:
        try:
            _parse_iso(v)
        except ValueError as exc:
            raise ValueError(f"invalid date: {v!r}") from exc
        return v


class GroupRecord(BaseModel):
    id: int | str
    name: str = ""
    color: str | None = None
    collapsed: bool = False

    model_config = ConfigDict(extra="allow")


class RowRecord(BaseModel):
    id: int | str
    name: str = ""
    groupId: int | str | None = None

    model_config = ConfigDict(extra="allow")


class ColumnRecord(BaseModel):
    id: int | str
    name: str = ""
    key: str

    model_config = ConfigDict(extra="allow")


class BoardRecord(BaseModel):
    id: str
    name: str
    groups: list[GroupRecord]
    rows: list[RowRecord]
    columns: list[ColumnRecord]

    model_config = ConfigDict(extra="allow")


class PositionRecord(BaseModel):
    id: str
    entityId: str
    boardId: str
    context: Literal["board", "weekly", "collection"]
    rowId: str | None = None
    columnKey: str | None = None
    order: int = 0


class RelationshipRecord(BaseModel):
    id: str
    entityId: str
    relatedId: str
    relationshipType: RelationshipType
    createdAt: str

    model_config = ConfigDict(extra="allow")


class WeeklyItemRecord(BaseModel):
    id: str
    weekKey: str
    entityId: str
    day: str | None = None
    order: int = 0

    model_config = ConfigDict(extra="allow")


# -----------------------------
# Validation issues & results
# -----------------------------


class Issue(BaseModel):
    severity: Literal["error", "warning"]
    code: str
    message: str
    location: str | None = None

    def __str__(self) -> str:
        where = f" [{self.location}]" if self.location else ""
        return f"{self.code}{where}: {self.message}"


class StructuralIssue(Issue):
    severity: Literal["error", "warning"] = "error"


class ReferentialWarning(Issue):
    severity: Literal["error", "warning"] = "warning"


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[StructuralIssue] = Field(default_factory=list)
    warnings: list[ReferentialWarning] = Field(default_factory=list)
    fixes: list[str] = Field(default_factory=list)
    stats: dict[str, int] = Field(default_factory=dict)
    # Repaired copy of the input; this is what the importer writes
    snapshot: dict[str, Any] = Field(default_factory=dict, repr=False)


class IntegrityReport(BaseModel):
    timestamp: str
    data_version: str
    validation: ValidationResult
    recommendations: list[str]
    summary: dict[str, Any]


class RecoveryReport(BaseModel):
    recovered_count: int
    placement_location: dict[str, str] | None = None
    entity_ids: list[str] = Field(default_factory=list)


ImportState = Literal[
    "Idle", "Detecting", "Migrating", "Validating", "Writing", "Reconciling", "Done", "Failed"
]


class ImportStats(BaseModel):
    import_id: str
    source_version: str
    target_version: str
    state: ImportState
    written: dict[str, int] = Field(default_factory=dict)
    dropped: dict[str, int] = Field(default_factory=dict)
    recovered_count: int = 0
    warnings: list[str] = Field(default_factory=list)
    fixes: list[str] = Field(default_factory=list)
    duration_ms: int = 0
