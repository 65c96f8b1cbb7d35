"""Sync Orchestrator: aggregate, score and reconcile with storage.

One run:
    1. Aggregates every source (a total outage stops here, nothing written)
    2. Scores each merged record
    3. Creates new IPOs and updates changed fields of known ones
    4. On a clean run, marks active IPOs no source reports any more as listed
    5. Writes a Parquet snapshot of the scored set

Steps 3 and 4 share one transaction. Archiving is a best-effort inference
that an IPO has left the active window; rows are never deleted.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence

import polars as pl

from ipolens.aggregation import Aggregator, gmp_trend
from ipolens.core.config import AppConfig, StorageConfig, get_config
from ipolens.core.errors import PersistenceError, SyncInProgressError
from ipolens.core.interfaces import IpoRepository
from ipolens.models import AggregationResult, MergedIpoRecord, StoredIpo, SyncResult, SyncStatus
from ipolens.scoring import ScoringEngine
from ipolens.storage import write_snapshot
from ipolens.utils.logger import get_logger, trace_context
from ipolens.utils.metrics import sync_changes, sync_duration, sync_runs

logger = get_logger(__name__)

# Fields compared against the stored row; bookkeeping fields are excluded
DIFF_FIELDS = tuple(name for name in MergedIpoRecord.model_fields if name not in ("symbol", "last_updated"))


def changed_fields(stored: StoredIpo, record: MergedIpoRecord) -> list[str]:
    """Fields whose fresh value differs from the stored one.

    A field the sources no longer report (None) keeps its stored value.
    """
    return [
        name
        for name in DIFF_FIELDS
        if getattr(record, name) is not None and getattr(record, name) != getattr(stored, name)
    ]


class SyncOrchestrator:
    """Runs syncs one at a time; a second concurrent call is rejected."""

    def __init__(
        self,
        aggregator: Aggregator,
        repository: IpoRepository,
        scoring: ScoringEngine | None = None,
        storage: StorageConfig | None = None,
    ):
        self.aggregator = aggregator
        self.repository = repository
        self.scoring = scoring or ScoringEngine()
        self.storage = storage or get_config().storage
        self.last_result: SyncResult | None = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def sync(self, clean: bool = False) -> SyncResult:
        """Run one sync.

        Args:
            clean: Also archive active IPOs that no source reports any more

        Returns:
            SyncResult; never raises for source or storage failures
        """
        if self._lock.locked():
            error = SyncInProgressError()
            logger.warning("sync_rejected", reason=error.message)
            sync_runs.labels(status=SyncStatus.REJECTED.value, clean=str(clean).lower()).inc()
            return SyncResult(success=False, status=SyncStatus.REJECTED, clean=clean, error=str(error))

        async with self._lock:
            with trace_context("sync", clean=clean) as trace_id:
                result = await self._run(clean, trace_id)
        self.last_result = result
        return result

    async def _run(self, clean: bool, trace_id: str) -> SyncResult:
        started = time.perf_counter()
        logger.info("sync_started")

        aggregation = await self.aggregator.aggregate()
        outcomes = aggregation.source_results

        if aggregation.total_outage:
            logger.error("sync_total_outage", total_sources=aggregation.total_sources)
            return self._finish(
                SyncResult(
                    success=False,
                    status=SyncStatus.TOTAL_OUTAGE,
                    clean=clean,
                    error=f"All {aggregation.total_sources} sources failed; nothing written",
                    trace_id=trace_id,
                    source_results=outcomes,
                ),
                started,
            )

        records = self.scoring.score_all(aggregation.records)
        try:
            # Blocking database work stays off the event loop
            created, updated, unchanged, archived, records = await asyncio.to_thread(
                self._persist, records, aggregation, clean
            )
        except PersistenceError as e:
            logger.error("sync_persistence_failed", error=str(e))
            return self._finish(
                SyncResult(
                    success=False,
                    status=SyncStatus.FAILED,
                    clean=clean,
                    total=len(records),
                    error=str(e),
                    trace_id=trace_id,
                    source_results=outcomes,
                ),
                started,
            )

        if self.storage.snapshot_enabled:
            await asyncio.to_thread(self._snapshot, records)

        return self._finish(
            SyncResult(
                success=True,
                status=SyncStatus.COMPLETED,
                clean=clean,
                created=created,
                updated=updated,
                unchanged=unchanged,
                marked_as_listed=archived,
                total=len(records),
                trace_id=trace_id,
                source_results=outcomes,
            ),
            started,
        )

    def _persist(
        self,
        records: Sequence[MergedIpoRecord],
        aggregation: AggregationResult,
        clean: bool,
    ) -> tuple[int, int, int, int, list[MergedIpoRecord]]:
        created = updated = unchanged = archived = 0
        persisted: list[MergedIpoRecord] = []

        with self.repository.transaction():
            for record in records:
                stored = self.repository.find_by_symbol(record.symbol)
                if stored is None:
                    self.repository.upsert(record)
                    created += 1
                    persisted.append(record)
                    continue

                trend = gmp_trend(record.gmp, stored.gmp)
                if trend is not None:
                    record = record.model_copy(update={"gmp_trend": trend})
                fields = changed_fields(stored, record)
                if fields:
                    self.repository.upsert(record, fields)
                    updated += 1
                    logger.debug("ipo_updated", symbol=record.symbol, fields=fields)
                else:
                    unchanged += 1
                persisted.append(record)

            if clean and aggregation.successful_sources > 0:
                current = {record.symbol for record in records}
                for symbol in sorted(self.repository.active_symbols() - current):
                    if self.repository.mark_archived(symbol):
                        archived += 1

        sync_changes.labels(action="created").inc(created)
        sync_changes.labels(action="updated").inc(updated)
        sync_changes.labels(action="marked_as_listed").inc(archived)
        return created, updated, unchanged, archived, persisted

    def _snapshot(self, records: Sequence[MergedIpoRecord]) -> None:
        try:
            write_snapshot(records, self.storage.snapshot_dir, self.storage.parquet_compression)
        except (OSError, pl.exceptions.PolarsError) as e:
            # Best effort; the rows are already committed
            logger.warning("snapshot_failed", error=str(e))

    def _finish(self, result: SyncResult, started: float) -> SyncResult:
        elapsed = time.perf_counter() - started
        result = result.model_copy(update={"duration_ms": round(elapsed * 1000, 1)})
        sync_runs.labels(status=result.status.value, clean=str(result.clean).lower()).inc()
        sync_duration.labels(status=result.status.value).observe(elapsed)
        log = logger.info if result.success else logger.warning
        log(
            "sync_completed",
            status=result.status.value,
            created=result.created,
            updated=result.updated,
            unchanged=result.unchanged,
            marked_as_listed=result.marked_as_listed,
            total=result.total,
            duration_ms=result.duration_ms,
        )
        return result


def build_sync_orchestrator(
    config: AppConfig | None = None,
    repository: IpoRepository | None = None,
) -> SyncOrchestrator:
    """Wire registry, aggregator, repository and scoring from configuration."""
    from ipolens.scrapers import build_registry
    from ipolens.storage import SqlIpoRepository, create_session_factory

    config = config or get_config()
    aggregator = Aggregator(build_registry(config), config.aggregator, config.circuit_breaker)
    if repository is None:
        repository = SqlIpoRepository(create_session_factory(storage=config.storage))
    return SyncOrchestrator(aggregator, repository, storage=config.storage)
