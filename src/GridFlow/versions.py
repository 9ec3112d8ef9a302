# versions.py

"""Schema version tags and structural fingerprinting.

Snapshots are identified by an explicit ``version`` field when it names a
known tag. Otherwise the shape itself is fingerprinted, newest format first,
and anything unrecognizable is treated as already current.
"""

from __future__ import annotations

from typing import Any, Final, TypedDict

VERSIONS: Final[tuple[str, ...]] = ("1.0", "2.0", "3.0", "4.0", "5.0", "6.0", "7.0")
CURRENT_VERSION: Final[str] = VERSIONS[-1]

# 2.5 only introduced templates; the 2.0 -> 3.0 step adds them as well
VERSION_ALIASES: Final[dict[str, str]] = {"2.5": "2.0"}

EXPORT_FORMAT_INDEXEDDB: Final[str] = "indexeddb"
EXPORT_FORMAT_DEXIE: Final[str] = "dexie"

_ENTITY_BUCKETS: Final[tuple[str, ...]] = ("tasks", "notes", "checklists", "projects")


# -----------------------------
# Per-version snapshot shapes
# -----------------------------


class SnapshotV1(TypedDict, total=False):
    groups: list[dict[str, Any]]
    rows: list[dict[str, Any]]  # rows[].cards[columnKey] -> [card objects]
    columns: list[dict[str, Any]]
    settings: dict[str, Any]


class SnapshotV2(TypedDict, total=False):
    version: str
    currentBoardId: str
    boards: dict[str, dict[str, Any]]
    templates: list[dict[str, Any]]


class SnapshotV3(SnapshotV2, total=False):
    weeklyPlans: dict[str, dict[str, Any]]  # items embed note/checklist content


class SnapshotV4(SnapshotV3, total=False):
    entities: dict[str, dict[str, Any]]  # bucketed: tasks / notes / checklists
    relationships: dict[str, dict[str, Any]]  # legacy maps, e.g. entityTags
    collections: dict[str, Any] | list[Any]
    tags: dict[str, Any] | list[Any]


class SnapshotV5(TypedDict, total=False):
    version: str
    currentBoardId: str
    boards: dict[str, dict[str, Any]]  # rows[].cards[columnKey] -> [entity ids]
    entities: dict[str, dict[str, Any]]  # flat, keyed by id
    weeklyPlans: dict[str, dict[str, Any]]
    relationships: list[dict[str, Any]]
    people: dict[str, Any] | list[Any]
    tags: dict[str, Any] | list[Any]
    collections: dict[str, Any] | list[Any]
    templates: list[dict[str, Any]]


class SnapshotV6(SnapshotV5, total=False):
    exportFormat: str  # "indexeddb"


class SnapshotV7(TypedDict, total=False):
    version: str
    exportFormat: str  # "dexie"
    currentBoardId: str
    entities: dict[str, dict[str, Any]]
    boards: dict[str, dict[str, Any]]
    people: list[dict[str, Any]]
    tags: list[dict[str, Any]]
    collections: list[dict[str, Any]]
    templates: list[dict[str, Any]]
    entityPositions: list[dict[str, Any]]
    relationships: list[dict[str, Any]]
    weeklyPlans: dict[str, dict[str, Any]]  # week -> {weekKey, items}


# The stable output contract of ``migrate``
NormalizedSnapshot = SnapshotV7


def normalize_version_tag(value: Any) -> str | None:
    """Return a canonical known tag for ``value`` or None.

    Numbers are accepted (``5`` and ``5.0`` both mean ``"5.0"``).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        tag = f"{float(value):.1f}"
    else:
        tag = str(value).strip()
        if tag.isdigit():
            tag = f"{tag}.0"
    tag = VERSION_ALIASES.get(tag, tag)
    return tag if tag in VERSIONS else None


def _is_bucketed(entities: Any) -> bool:
    if not isinstance(entities, dict) or not entities:
        return False
    has_bucket = any(isinstance(entities.get(k), (dict, list)) for k in _ENTITY_BUCKETS)
    looks_flat = any(isinstance(v, dict) and "id" in v and "type" in v for v in entities.values())
    return has_bucket and not looks_flat


def fingerprint(raw: Any) -> str:
    """Infer a version from structure alone. Pure."""
    if not isinstance(raw, dict):
        return CURRENT_VERSION
    fmt = raw.get("exportFormat")
    if fmt == EXPORT_FORMAT_DEXIE or isinstance(raw.get("entityPositions"), list):
        return "7.0"
    if fmt == EXPORT_FORMAT_INDEXEDDB:
        return "6.0"
    entities = raw.get("entities")
    if isinstance(entities, dict) and not _is_bucketed(entities):
        return "5.0"
    if "relationships" in raw or _is_bucketed(entities):
        return "4.0"
    if "weeklyPlans" in raw:
        return "3.0"
    if "boards" in raw or "templates" in raw:
        return "2.0"
    if "rows" in raw or "groups" in raw:
        return "1.0"
    return CURRENT_VERSION


def detect_version(raw: Any) -> str:
    """Trust a known explicit ``version``; fingerprint otherwise."""
    if isinstance(raw, dict):
        tag = normalize_version_tag(raw.get("version"))
        if tag is not None:
            return tag
    return fingerprint(raw)


def has_unknown_version(raw: Any) -> bool:
    """True when ``raw`` names a version tag this module does not know."""
    if not isinstance(raw, dict) or raw.get("version") in (None, ""):
        return False
    return normalize_version_tag(raw["version"]) is None


def version_index(tag: str) -> int:
    return VERSIONS.index(VERSION_ALIASES.get(tag, tag))


__all__ = [
    "CURRENT_VERSION",
    "EXPORT_FORMAT_DEXIE",
    "EXPORT_FORMAT_INDEXEDDB",
    "NormalizedSnapshot",
    "SnapshotV1",
    "SnapshotV2",
    "SnapshotV3",
    "SnapshotV4",
    "SnapshotV5",
    "SnapshotV6",
    "SnapshotV7",
    "VERSIONS",
    "VERSION_ALIASES",
    "detect_version",
    "fingerprint",
    "has_unknown_version",
    "normalize_version_tag",
    "version_index",
]
