# models.py

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar

from sqlalchemy import JSON, Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from GridFlow.db import Base

# Record field -> (column attribute, python type) for each indexed field.
IndexMap = dict[str, tuple[str, type]]


def coerce_index_value(value: Any, kind: type) -> Any:
    if value is None:
        return None
    if kind is bool:
        return bool(value)
    if kind is int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    return str(value)


class RecordMixin:
    """A keyed JSON record plus the columns it is queried by.

    ``doc`` holds the full record exactly as written; indexed columns are
    derived from it on every put and are never read back into the record.
    """

    COLLECTION: ClassVar[str]
    KEY_FIELD: ClassVar[str] = "id"
    INDEXED: ClassVar[IndexMap] = {}
    # Column attributes used to order list results; defaults to the key
    ORDER_BY: ClassVar[tuple[str, ...]] = ()

    doc: Mapped[dict] = mapped_column(JSON)

    @classmethod
    def column_for(cls, field: str):
        try:
            attr, _ = cls.INDEXED[field]
        except KeyError as exc:
            raise KeyError(f"{cls.COLLECTION}.{field} is not indexed") from exc
        return getattr(cls, attr)

    @classmethod
    def key_column(cls):
        return cls.column_for(cls.KEY_FIELD)

    def apply_record(self, record: Mapping[str, Any]) -> None:
        for field, (attr, kind) in self.INDEXED.items():
            setattr(self, attr, coerce_index_value(record.get(field), kind))
        self.doc = dict(record)

    def to_record(self) -> dict[str, Any]:
        return dict(self.doc or {})


class Entity(RecordMixin, Base):
    __tablename__ = "entities"
    COLLECTION = "entities"
    INDEXED = {
        "id": ("id", str),
        "type": ("type", str),
        "completed": ("completed", bool),
        "priority": ("priority", str),
        "dueDate": ("due_date", str),
        "createdAt": ("created_at", str),
        "updatedAt": ("updated_at", str),
    }

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    type: Mapped[str | None] = mapped_column(String(32), index=True)
    completed: Mapped[bool | None] = mapped_column(Boolean, index=True)
    priority: Mapped[str | None] = mapped_column(String(16), index=True, nullable=True)
    due_date: Mapped[str | None] = mapped_column(String(40), index=True, nullable=True)
    created_at: Mapped[str | None] = mapped_column(String(40))
    updated_at: Mapped[str | None] = mapped_column(String(40))


class Board(RecordMixin, Base):
    __tablename__ = "boards"
    COLLECTION = "boards"
    INDEXED = {
        "id": ("id", str),
        "name": ("name", str),
        "createdAt": ("created_at", str),
    }

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(200))
    created_at: Mapped[str | None] = mapped_column(String(40))


class Person(RecordMixin, Base):
    __tablename__ = "people"
    COLLECTION = "people"
    INDEXED = {
        "id": ("id", str),
        "name": ("name", str),
        "email": ("email", str),
        "lastInteraction": ("last_interaction", str),
    }

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(200), index=True)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_interaction: Mapped[str | None] = mapped_column(String(40), index=True, nullable=True)


class Tag(RecordMixin, Base):
    __tablename__ = "tags"
    COLLECTION = "tags"
    INDEXED = {
        "id": ("id", str),
        "name": ("name", str),
        "category": ("category", str),
    }

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(200), index=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)


class SmartCollection(RecordMixin, Base):
    __tablename__ = "collections"
    COLLECTION = "collections"
    INDEXED = {
        "id": ("id", str),
        "name": ("name", str),
        "type": ("type", str),
    }

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(200))
    type: Mapped[str | None] = mapped_column(String(32), nullable=True)


class Template(RecordMixin, Base):
    __tablename__ = "templates"
    COLLECTION = "templates"
    INDEXED = {
        "id": ("id", str),
        "name": ("name", str),
        "category": ("category", str),
    }

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(200))
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)


class EntityPosition(RecordMixin, Base):
    __tablename__ = "entity_positions"
    COLLECTION = "entityPositions"
    ORDER_BY = ("order_idx", "seq")
    INDEXED = {
        "id": ("id", str),
        "entityId": ("entity_id", str),
        "boardId": ("board_id", str),
        "context": ("context", str),
        "rowId": ("row_id", str),
        "columnKey": ("column_key", str),
        "order": ("order_idx", int),
    }

    # Insertion sequence; tie-breaker for equal ``order`` within a cell
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(300), unique=True, index=True)
    entity_id: Mapped[str] = mapped_column(String(128), index=True)
    board_id: Mapped[str] = mapped_column(String(128), index=True)
    context: Mapped[str] = mapped_column(String(16))
    row_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    column_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    order_idx: Mapped[int | None] = mapped_column("sort_order", Integer, nullable=True)

    __table_args__ = (
        Index(
            "ix_entity_positions_cell",
            "board_id",
            "context",
            "row_id",
            "column_key",
        ),
    )


class EntityRelationship(RecordMixin, Base):
    __tablename__ = "entity_relationships"
    COLLECTION = "entityRelationships"
    INDEXED = {
        "id": ("id", str),
        "entityId": ("entity_id", str),
        "relatedId": ("related_id", str),
        "relationshipType": ("relationship_type", str),
        "createdAt": ("created_at", str),
    }

    id: Mapped[str] = mapped_column(String(300), primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(128), index=True)
    related_id: Mapped[str] = mapped_column(String(128), index=True)
    relationship_type: Mapped[str] = mapped_column(String(32), index=True)
    created_at: Mapped[str | None] = mapped_column(String(40))


class WeeklyPlan(RecordMixin, Base):
    __tablename__ = "weekly_plans"
    COLLECTION = "weeklyPlans"
    KEY_FIELD = "weekKey"
    INDEXED = {
        "weekKey": ("week_key", str),
        "weekStart": ("week_start", str),
    }

    week_key: Mapped[str] = mapped_column(String(32), primary_key=True)
    week_start: Mapped[str | None] = mapped_column(String(40), nullable=True)


class WeeklyItem(RecordMixin, Base):
    __tablename__ = "weekly_items"
    COLLECTION = "weeklyItems"
    ORDER_BY = ("week_key", "order_idx", "id")
    INDEXED = {
        "id": ("id", str),
        "weekKey": ("week_key", str),
        "entityId": ("entity_id", str),
        "day": ("day", str),
        "order": ("order_idx", int),
    }

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    week_key: Mapped[str] = mapped_column(String(32), index=True)
    entity_id: Mapped[str] = mapped_column(String(128), index=True)
    day: Mapped[str | None] = mapped_column(String(16), nullable=True)
    order_idx: Mapped[int | None] = mapped_column("sort_order", Integer, nullable=True)


class AppMetadata(RecordMixin, Base):
    __tablename__ = "app_metadata"
    COLLECTION = "metadata"
    KEY_FIELD = "key"
    INDEXED = {
        "key": ("key", str),
        "lastUpdated": ("last_updated", str),
    }

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_updated: Mapped[str | None] = mapped_column(String(40), nullable=True)


COLLECTION_MODELS: dict[str, type[RecordMixin]] = {
    m.COLLECTION: m
    for m in (
        Entity,
        Board,
        Person,
        Tag,
        SmartCollection,
        Template,
        EntityPosition,
        EntityRelationship,
        WeeklyPlan,
        WeeklyItem,
        AppMetadata,
    )
}

ALL_COLLECTIONS: tuple[str, ...] = tuple(COLLECTION_MODELS)
