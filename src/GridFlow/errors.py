"""Exception taxonomy for the store core.

Only the import write step produces a true transactional failure; migration
transforms degrade data and warn, and the validator turns accumulated
problems into a verdict (see ``GridFlow.validator``).
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from GridFlow.schemas import StructuralIssue


class GridFlowError(Exception):
    """Base exception for store core errors."""

    pass


class StructuralError(GridFlowError):
    """Snapshot still violates required structure after auto-repair."""

    def __init__(self, issues: Sequence[StructuralIssue]):
        self.issues = list(issues)
        preview = "; ".join(i.message for i in self.issues[:3])
        more = f" (+{len(self.issues) - 3} more)" if len(self.issues) > 3 else ""
        super().__init__(f"{len(self.issues)} structural error(s): {preview}{more}")


class TransactionError(GridFlowError):
    """Backend transaction failed (rolled back) or was used incorrectly."""

    pass


class RetryableIOError(GridFlowError):
    """Transient backend unavailability that exhausted its retry budget."""

    def __init__(self, message: str, *, attempts: int):
        self.attempts = attempts
        super().__init__(f"{message} (after {attempts} attempt(s))")


class ImportInProgressError(GridFlowError):
    """A second import was started against a store that is already importing."""

    pass


class RecoveryTargetError(GridFlowError):
    """Orphan placement target board/row/column is missing."""

    pass


class RecordNotFoundError(GridFlowError, KeyError):
    """A mutation referenced a record that does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "record not found"


class EntityNotFoundError(RecordNotFoundError):
    """An index mutation referenced an entity that does not exist."""

    pass


__all__ = [
    "GridFlowError",
    "StructuralError",
    "TransactionError",
    "RetryableIOError",
    "ImportInProgressError",
    "RecoveryTargetError",
    "RecordNotFoundError",
    "EntityNotFoundError",
]
