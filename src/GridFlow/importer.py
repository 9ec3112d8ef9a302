"""Snapshot import pipeline.

``ImportCoordinator.run`` drives one import through its states::

    Idle -> Detecting -> Migrating -> Validating -> Writing -> Reconciling -> Done
                                          |             |
                                          +--> Failed <-+

Migration and referential problems degrade to warnings. An invalid validator
verdict fails the run before anything is written; a backend failure while
writing rolls the whole transaction back. Orphan reconciliation runs inside
the write transaction, so a run is either fully applied or not at all.

Only one run per store is in flight at a time: a second run waits for the
first (``queue``) or is refused with ``ImportInProgressError`` (``reject``).
"""

from __future__ import annotations

import asyncio
import time
import weakref
from typing import Any

import structlog
from structlog.contextvars import bound_contextvars

from GridFlow.config import Settings, load_settings
from GridFlow.errors import (
    ImportInProgressError,
    RecoveryTargetError,
    StructuralError,
    TransactionError,
)
from GridFlow.ids import Clock, IdGenerator, generate_ulid, make_id_generator, utc_now_iso
from GridFlow.metrics import inc_counter, observe_histogram
from GridFlow.migration import MigrationContext, migrate
from GridFlow.models import ALL_COLLECTIONS
from GridFlow.orphans import OrphanRecovery
from GridFlow.schemas import ImportState, ImportStats, ReferentialWarning
from GridFlow.store import Store, Transaction
from GridFlow.validator import StructuralValidator
from GridFlow.versions import CURRENT_VERSION, detect_version

log = structlog.get_logger()

_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, asyncio.Lock]] = (
    weakref.WeakKeyDictionary()
)


def _store_lock(name: str) -> asyncio.Lock:
    # Locks bind to the loop they first wait on; one table per live loop
    per_loop = _locks.setdefault(asyncio.get_running_loop(), {})
    lk = per_loop.get(name)
    if lk is None:
        lk = asyncio.Lock()
        per_loop[name] = lk
    return lk


def record_rollback(phase: str, import_id: str, reason: str) -> None:
    """Record metrics and logs for an aborted import."""
    inc_counter("importer.rollback")
    inc_counter(f"importer.rollback.{phase.lower()}")
    log.warning("importer.rollback", phase=phase, import_id=import_id, reason=reason)


class ImportCoordinator:
    def __init__(
        self,
        store: Store,
        settings: Settings | None = None,
        *,
        clock: Clock | None = None,
    ):
        self.store = store
        self.settings = settings or load_settings()
        self.clock: Clock = clock or utc_now_iso

    async def run(self, raw: Any, *, replace: bool = False) -> ImportStats:
        """Import ``raw`` (any known snapshot version) into the store.

        With ``replace=True`` every collection is cleared first, inside the
        same transaction as the write.
        """
        lock = _store_lock(self.store.name)
        if self.settings.import_concurrency == "reject" and lock.locked():
            inc_counter("importer.rejected")
            log.warning("importer.rejected", store=self.store.name)
            raise ImportInProgressError(f"an import into {self.store.name!r} is already running")
        if lock.locked():
            log.info("importer.queued", store=self.store.name)
        async with lock:
            import_id = generate_ulid()
            with bound_contextvars(import_id=import_id):
                return await self._run_locked(import_id, raw, replace)

    def _enter(self, stats: ImportStats, state: ImportState) -> None:
        stats.state = state
        log.info("importer.state", state=state)

    async def _seed(self) -> tuple[IdGenerator, set[str]]:
        """ID generator continuing persisted counters, plus ids already stored."""
        async with self.store.transaction("r", ("metadata", "entities")) as tx:
            meta = await tx.table("metadata").get("idCounters")
            existing = {str(e["id"]) for e in await tx.table("entities").to_list()}
        counters = (meta or {}).get("value") or {}
        ids = make_id_generator(self.settings, counters if isinstance(counters, dict) else {})
        for entity_id in existing:
            ids.reserve(entity_id)
        return ids, existing

    async def _run_locked(self, import_id: str, raw: Any, replace: bool) -> ImportStats:
        started = time.perf_counter()
        inc_counter("importer.started")
        stats = ImportStats(
            import_id=import_id,
            source_version=detect_version(raw),
            target_version=CURRENT_VERSION,
            state="Idle",
        )
        log.info("importer.started", source_version=stats.source_version, replace=replace)
        self._enter(stats, "Detecting")
        try:
            ids, existing = await self._seed()

            self._enter(stats, "Migrating")
            ctx = MigrationContext(ids=ids, clock=self.clock)
            snapshot = migrate(raw, context=ctx)
            stats.source_version = ctx.source_version or stats.source_version
            stats.warnings.extend(str(w) for w in ctx.warnings)

            self._enter(stats, "Validating")
            known = set() if replace else existing
            result = StructuralValidator(clock=self.clock).validate(
                snapshot, known_entity_ids=known
            )
            stats.warnings.extend(str(w) for w in result.warnings)
            stats.fixes.extend(result.fixes)
            if not result.is_valid:
                self._enter(stats, "Failed")
                raise StructuralError(result.errors)

            self._enter(stats, "Writing")
            try:
                async with self.store.transaction("rw", ALL_COLLECTIONS) as tx:
                    await self._write(tx, result.snapshot, ids, known, stats, replace=replace)
                    if self.settings.orphan_recovery_enabled:
                        self._enter(stats, "Reconciling")
                        await self._reconcile(tx, result.snapshot, stats)
            except Exception as exc:
                self._enter(stats, "Failed")
                record_rollback("Writing", import_id, str(exc))
                if isinstance(exc, TransactionError):
                    raise
                raise TransactionError(f"import write aborted: {exc}") from exc

            self._enter(stats, "Done")
            inc_counter("importer.completed")
            if stats.warnings:
                inc_counter("importer.warnings", len(stats.warnings))
            return stats
        finally:
            stats.duration_ms = int((time.perf_counter() - started) * 1000)
            observe_histogram("importer.duration_ms", stats.duration_ms)
            log.info(
                "importer.finished",
                state=stats.state,
                duration_ms=stats.duration_ms,
                written=stats.written,
                warnings=len(stats.warnings),
            )

    async def _write(
        self,
        tx: Transaction,
        snapshot: dict[str, Any],
        ids: IdGenerator,
        existing: set[str],
        stats: ImportStats,
        *,
        replace: bool,
    ) -> None:
        if replace:
            for name in ALL_COLLECTIONS:
                await tx.table(name).clear()

        entities = list(snapshot["entities"].values())
        known = {str(e["id"]) for e in entities} | existing

        def closed(kind: str, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
            kept = [r for r in records if str(r.get("entityId")) in known]
            for r in records:
                if str(r.get("entityId")) not in known:
                    w = ReferentialWarning(
                        code="dangling_reference",
                        message=f"{kind} {r.get('id')!r} references unknown entity; dropped",
                        location=kind,
                    )
                    stats.warnings.append(str(w))
            return kept

        weekly_items = [
            item for plan in snapshot["weeklyPlans"].values() for item in plan.get("items", [])
        ]
        weekly_plans = [
            {k: v for k, v in plan.items() if k != "items"}
            for plan in snapshot["weeklyPlans"].values()
        ]
        batches: dict[str, list[dict[str, Any]]] = {
            "entities": entities,
            "boards": list(snapshot["boards"].values()),
            "people": snapshot["people"],
            "tags": snapshot["tags"],
            "collections": snapshot["collections"],
            "templates": snapshot["templates"],
            "entityPositions": closed("entityPositions", snapshot["entityPositions"]),
            "entityRelationships": closed("entityRelationships", snapshot["relationships"]),
            "weeklyPlans": weekly_plans,
            "weeklyItems": closed("weeklyItems", weekly_items),
        }
        sources = {
            "entityPositions": len(snapshot["entityPositions"]),
            "entityRelationships": len(snapshot["relationships"]),
            "weeklyItems": len(weekly_items),
        }
        for name, records in batches.items():
            stats.written[name] = await tx.table(name).bulk_put(records)
            log.debug("importer.write", collection=name, count=stats.written[name])
        for name, total in sources.items():
            dropped = total - stats.written[name]
            if dropped:
                stats.dropped[name] = dropped

        now = self.clock()
        await tx.table("metadata").bulk_put(
            [
                {"key": "idCounters", "value": ids.counters(), "lastUpdated": now},
                {"key": "schemaVersion", "value": CURRENT_VERSION, "lastUpdated": now},
                {"key": "currentBoardId", "value": snapshot.get("currentBoardId"), "lastUpdated": now},
            ]
        )

    async def _reconcile(
        self, tx: Transaction, snapshot: dict[str, Any], stats: ImportStats
    ) -> None:
        board_id = str(snapshot.get("currentBoardId") or "default")
        try:
            report = await OrphanRecovery(self.store).recover(board_id, tx=tx)
        except RecoveryTargetError as exc:
            w = ReferentialWarning(code="orphans_unplaced", message=str(exc), location=board_id)
            stats.warnings.append(str(w))
            log.warning("importer.reconcile.skipped", board_id=board_id, reason=str(exc))
            return
        stats.recovered_count = report.recovered_count


async def import_snapshot(
    raw: Any,
    store: Store | None = None,
    *,
    replace: bool = False,
    settings: Settings | None = None,
    clock: Clock | None = None,
) -> ImportStats:
    """Convenience wrapper: import ``raw`` into ``store`` (default store)."""
    store = store or Store(settings=settings)
    return await ImportCoordinator(store, settings, clock=clock).run(raw, replace=replace)


__all__ = ["ImportCoordinator", "import_snapshot", "record_rollback"]
