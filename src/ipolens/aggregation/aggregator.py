"""Concurrent fan-out over all registered sources and merge of their records.

Each source operation runs under its own timeout and circuit breaker; the
merge starts only after every operation has returned, failed or timed out.
A pass never raises: with every source down it returns an empty result whose
``total_outage`` flag is set.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from ipolens.aggregation.merge import MergePolicy, merge_records
from ipolens.core.config import AggregatorConfig, CircuitBreakerConfig, get_config
from ipolens.core.interfaces import SourceScraper
from ipolens.models import (
    KIND_MODELS,
    AggregationResult,
    DataKind,
    ScraperResult,
    SourceOutcome,
)
from ipolens.scrapers.registry import SourceRegistry
from ipolens.utils.circuit_breaker import CircuitBreaker
from ipolens.utils.logger import get_logger
from ipolens.utils.metrics import merged_records

logger = get_logger(__name__)

ALL_KINDS = (DataKind.IPOS, DataKind.SUBSCRIPTIONS, DataKind.GMP)


@dataclass
class SourceStats:
    """Running call statistics for one source."""

    calls: int = 0
    successes: int = 0
    failures: int = 0
    total_response_ms: float = 0.0
    last_error: str | None = None

    @property
    def success_rate(self) -> float:
        return self.successes / self.calls if self.calls else 0.0

    @property
    def avg_response_ms(self) -> float:
        return self.total_response_ms / self.calls if self.calls else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "calls": self.calls,
            "successes": self.successes,
            "failures": self.failures,
            "success_rate": round(self.success_rate, 3),
            "avg_response_ms": round(self.avg_response_ms, 1),
            "last_error": self.last_error,
        }


class Aggregator:
    """Fans out to every registered scraper and merges what comes back.

    Example:
        >>> aggregator = Aggregator(build_registry())
        >>> result = await aggregator.aggregate()
        >>> result.get("ABC").sources
        {'nse', 'investorgain'}
    """

    def __init__(
        self,
        registry: SourceRegistry,
        config: AggregatorConfig | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
    ):
        app_config = get_config()
        self.registry = registry
        self.config = config or app_config.aggregator
        breaker_config = breaker_config or app_config.circuit_breaker
        self.breakers = {
            source_id: CircuitBreaker(
                source_id,
                failure_threshold=breaker_config.failure_threshold,
                recovery_timeout=breaker_config.recovery_timeout_seconds,
            )
            for source_id in registry.source_ids
        }
        self.stats = {source_id: SourceStats() for source_id in registry.source_ids}
        self.policy = MergePolicy(
            priority_for=registry.priority_for,
            average_subscriptions=self.config.average_subscriptions,
            tolerance=self.config.agreement_tolerance,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def aggregate_ipos(self) -> AggregationResult:
        return await self.aggregate((DataKind.IPOS,))

    async def aggregate_subscriptions(self) -> AggregationResult:
        return await self.aggregate((DataKind.SUBSCRIPTIONS,))

    async def aggregate_gmp(self) -> AggregationResult:
        return await self.aggregate((DataKind.GMP,))

    async def aggregate(self, kinds: Sequence[DataKind] = ALL_KINDS) -> AggregationResult:
        """Run one aggregation pass over the given data kinds.

        With several kinds the records of all kinds are joined into one
        merged record per IPO.
        """
        calls = [(scraper, kind) for scraper in self.registry for kind in kinds]
        results: list[ScraperResult] = await asyncio.gather(
            *(self._guarded(scraper, kind) for scraper, kind in calls)
        )

        attempted: set[str] = set()
        succeeded: set[str] = set()
        raw = []
        for result in results:
            if not result.supported:
                continue
            attempted.add(result.source)
            if result.contributed:
                succeeded.add(result.source)
                raw.extend(result.data)

        records = merge_records(raw, self.policy)
        label = kinds[0].value if len(kinds) == 1 else "combined"
        merged_records.labels(kind=label).set(len(records))

        aggregation = AggregationResult(
            records=records,
            source_results=[self._outcome(result) for result in results],
            total_sources=len(attempted),
            successful_sources=len(succeeded),
        )
        log = logger.warning if aggregation.total_outage else logger.info
        log(
            "aggregation_completed",
            kinds=[kind.value for kind in kinds],
            records=len(records),
            total_sources=aggregation.total_sources,
            successful_sources=aggregation.successful_sources,
            total_outage=aggregation.total_outage,
        )
        return aggregation

    async def test_connections(self) -> list[SourceOutcome]:
        """Fetch each source's listing once and report reachability."""
        results = await asyncio.gather(
            *(self._guarded(scraper, DataKind.IPOS) for scraper in self.registry)
        )
        return [self._outcome(result) for result in results]

    def source_stats(self) -> dict[str, dict[str, Any]]:
        """Per-source call counts, success rate, latency and breaker state."""
        return {
            source_id: {**stats.as_dict(), "circuit": self.breakers[source_id].state.value}
            for source_id, stats in self.stats.items()
        }

    async def aclose(self) -> None:
        await self.registry.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _guarded(self, scraper: SourceScraper, kind: DataKind) -> ScraperResult:
        """Run one source operation; never raises."""
        result_type = ScraperResult[KIND_MODELS[kind]]
        breaker = self.breakers.get(scraper.source_id)
        if breaker is not None and not breaker.allow_request():
            return result_type(source=scraper.source_id, kind=kind, success=False, error="circuit open")

        operation = {
            DataKind.IPOS: scraper.get_ipos,
            DataKind.SUBSCRIPTIONS: scraper.get_subscriptions,
            DataKind.GMP: scraper.get_gmp,
        }[kind]

        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(operation(), timeout=self.config.source_timeout_seconds)
        except asyncio.TimeoutError:
            result = result_type(
                source=scraper.source_id,
                kind=kind,
                success=False,
                error=f"timed out after {self.config.source_timeout_seconds:g}s",
            )
        except Exception as e:
            # Scrapers are expected to capture their own errors
            logger.exception("scraper_contract_violation", source=scraper.source_id, operation=kind.value)
            result = result_type(source=scraper.source_id, kind=kind, success=False, error=str(e))

        elapsed = (time.perf_counter() - started) * 1000
        if not result.response_time_ms:
            result = result.model_copy(update={"response_time_ms": elapsed})

        if result.supported:
            self._record(scraper.source_id, result)
            if breaker is not None:
                breaker.record(result.success, result.error)
        if not result.success:
            logger.warning(
                "source_failed",
                source=scraper.source_id,
                operation=kind.value,
                error=result.error,
            )
        return result

    def _record(self, source_id: str, result: ScraperResult) -> None:
        stats = self.stats.setdefault(source_id, SourceStats())
        stats.calls += 1
        stats.total_response_ms += result.response_time_ms
        if result.success:
            stats.successes += 1
        else:
            stats.failures += 1
            stats.last_error = result.error

    @staticmethod
    def _outcome(result: ScraperResult) -> SourceOutcome:
        return SourceOutcome(
            source=result.source,
            kind=result.kind,
            success=result.success,
            count=len(result.data),
            response_time_ms=round(result.response_time_ms, 1),
            error=result.error if result.supported else "not supported",
        )
