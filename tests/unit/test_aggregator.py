"""Tests for the concurrent source aggregator."""

import pytest
from conftest import FakeScraper, make_registry

from ipolens.aggregation import Aggregator
from ipolens.core.config import AggregatorConfig, CircuitBreakerConfig
from ipolens.models import Confidence, DataKind, GmpData, IpoData, SubscriptionData


def build(*scrapers, timeout: float = 1.0, threshold: int = 3, **registry_kwargs) -> Aggregator:
    return Aggregator(
        make_registry(*scrapers, **registry_kwargs),
        AggregatorConfig(source_timeout_seconds=timeout),
        CircuitBreakerConfig(failure_threshold=threshold, recovery_timeout_seconds=60),
    )


def outcome(result, source, kind):
    return next(o for o in result.source_results if o.source == source and o.kind == kind)


class TestAggregate:
    """Test suite for Aggregator.aggregate."""

    @pytest.mark.asyncio
    async def test_joins_listing_and_gmp_sources(self):
        """Test that complementary sources merge into one record."""
        nse = FakeScraper("nse", ipos=[IpoData(source="nse", symbol="ABC", company_name="ABC Technologies Ltd", pe_ratio=35.2)])
        investorgain = FakeScraper(
            "investorgain",
            ipos=[],
            gmp=[GmpData(source="investorgain", company_name="ABC Technologies Limited", gmp=125)],
        )
        aggregator = build(nse, investorgain)

        result = await aggregator.aggregate()

        record = result.get("ABC")
        assert record is not None
        assert record.sources == {"nse", "investorgain"}
        assert record.gmp == 125
        assert record.pe_ratio == 35.2
        assert record.confidence == Confidence.MEDIUM
        assert result.total_sources == 2
        assert result.successful_sources == 2
        assert not result.total_outage

    @pytest.mark.asyncio
    async def test_failed_source_does_not_block_others(self):
        """Test partial failure keeps the healthy source's records."""
        nse = FakeScraper("nse", error="HTTP 403")
        groww = FakeScraper("groww", ipos=[IpoData(source="groww", company_name="XYZ Foods", price_max=222.0)])
        aggregator = build(nse, groww)

        result = await aggregator.aggregate_ipos()

        assert [r.symbol for r in result.records] == ["XYZFOODS"]
        assert result.total_sources == 2
        assert result.successful_sources == 1
        assert outcome(result, "nse", DataKind.IPOS).error == "HTTP 403"
        assert outcome(result, "groww", DataKind.IPOS).count == 1

    @pytest.mark.asyncio
    async def test_total_outage(self):
        """Test that every source failing is flagged rather than raised."""
        aggregator = build(FakeScraper("nse", error="down"), FakeScraper("groww", error="down"))

        result = await aggregator.aggregate_ipos()

        assert result.records == []
        assert result.total_outage

    @pytest.mark.asyncio
    async def test_unsupported_kinds_are_not_counted(self):
        """Test that a source without the operation is neither a success nor a failure."""
        nse = FakeScraper("nse", error="down", gmp=[])
        groww = FakeScraper("groww", gmp=None)
        aggregator = build(nse, groww)

        result = await aggregator.aggregate_gmp()

        assert result.total_sources == 1
        assert result.total_outage
        assert outcome(result, "groww", DataKind.GMP).error == "not supported"
        assert groww.calls == [DataKind.GMP]

    @pytest.mark.asyncio
    async def test_nothing_supported_is_not_an_outage(self):
        """Test an operation no source implements."""
        aggregator = build(FakeScraper("nse"), FakeScraper("groww"))

        result = await aggregator.aggregate_subscriptions()

        assert result.total_sources == 0
        assert not result.total_outage

    @pytest.mark.asyncio
    async def test_slow_source_times_out(self):
        """Test the per-source timeout."""
        slow = FakeScraper("nse", ipos=[IpoData(source="nse", company_name="Slow Ltd")], delay=0.5)
        fast = FakeScraper("groww", ipos=[IpoData(source="groww", company_name="Fast Ltd")])
        aggregator = build(slow, fast, timeout=0.05)

        result = await aggregator.aggregate_ipos()

        assert [r.symbol for r in result.records] == ["FAST"]
        assert outcome(result, "nse", DataKind.IPOS).error == "timed out after 0.05s"

    @pytest.mark.asyncio
    async def test_raising_scraper_is_captured(self):
        """Test that a scraper breaking its contract still yields a result."""
        broken = FakeScraper("nse")

        async def explode():
            raise RuntimeError("boom")

        broken.get_ipos = explode
        aggregator = build(broken, FakeScraper("groww", ipos=[]))

        result = await aggregator.aggregate_ipos()

        assert outcome(result, "nse", DataKind.IPOS).error == "boom"
        assert result.successful_sources == 1

    @pytest.mark.asyncio
    async def test_subscriptions_from_two_sources_are_averaged(self):
        """Test averaging across sources inside a pass."""
        nse = FakeScraper("nse", subscriptions=[SubscriptionData(source="nse", company_name="ABC Ltd", total=10.0)])
        chittorgarh = FakeScraper(
            "chittorgarh", subscriptions=[SubscriptionData(source="chittorgarh", company_name="ABC Ltd", total=14.0)]
        )
        aggregator = build(nse, chittorgarh)

        result = await aggregator.aggregate_subscriptions()

        assert result.get("ABC").subscription_total == 12.0


class TestCircuitBreaking:
    """Test suite for per-source circuit breakers."""

    @pytest.mark.asyncio
    async def test_open_breaker_skips_source(self):
        """Test that a tripped source is not called again."""
        failing = FakeScraper("nse", error="HTTP 503")
        aggregator = build(failing, FakeScraper("groww", ipos=[]), threshold=1)

        await aggregator.aggregate_ipos()
        result = await aggregator.aggregate_ipos()

        assert failing.calls == [DataKind.IPOS]
        assert outcome(result, "nse", DataKind.IPOS).error == "circuit open"
        assert aggregator.source_stats()["nse"]["circuit"] == "open"

    @pytest.mark.asyncio
    async def test_unsupported_results_do_not_trip_breaker(self):
        """Test that missing operations are not failures."""
        aggregator = build(FakeScraper("groww", ipos=[]), threshold=1)

        await aggregator.aggregate_gmp()
        await aggregator.aggregate_gmp()

        assert aggregator.source_stats()["groww"]["circuit"] == "closed"
        assert aggregator.source_stats()["groww"]["calls"] == 0


class TestStatsAndConnections:
    """Test suite for stats, connection checks and cleanup."""

    @pytest.mark.asyncio
    async def test_source_stats(self):
        """Test call counts and success rates."""
        aggregator = build(FakeScraper("nse", ipos=[]), FakeScraper("groww", error="down"))

        await aggregator.aggregate_ipos()
        await aggregator.aggregate_ipos()
        stats = aggregator.source_stats()

        assert stats["nse"]["calls"] == 2
        assert stats["nse"]["success_rate"] == 1.0
        assert stats["nse"]["avg_response_ms"] == 12.0
        assert stats["groww"]["failures"] == 2
        assert stats["groww"]["last_error"] == "down"

    @pytest.mark.asyncio
    async def test_test_connections(self):
        """Test one listing fetch per source."""
        aggregator = build(FakeScraper("nse", ipos=[IpoData(source="nse", company_name="ABC Ltd")]), FakeScraper("groww", error="HTTP 403"))

        outcomes = await aggregator.test_connections()

        assert [(o.source, o.success) for o in outcomes] == [("nse", True), ("groww", False)]
        assert outcomes[0].count == 1

    @pytest.mark.asyncio
    async def test_aclose(self):
        """Test that closing the aggregator closes every scraper."""
        scrapers = [FakeScraper("nse"), FakeScraper("groww")]
        aggregator = build(*scrapers)

        await aggregator.aclose()

        assert all(s.closed for s in scrapers)
