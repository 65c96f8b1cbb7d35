"""End-to-end sync: scrapers -> aggregator -> scoring -> SQLite -> API.

The Chittorgarh scraper runs against canned HTML pages; the exchange source
is an in-memory fake.
"""

from datetime import date

import httpx
import polars as pl
import pytest
from conftest import FIXTURES_DIR, FakeScraper, make_registry
from fastapi.testclient import TestClient

from ipolens.aggregation import Aggregator
from ipolens.api.dependencies import get_orchestrator, get_repository
from ipolens.api.main import create_app
from ipolens.core.config import ScraperConfig
from ipolens.models import Confidence, DataKind, IpoData, IpoStatus, SyncStatus
from ipolens.orchestration import SyncOrchestrator
from ipolens.scrapers import ChittorgarhScraper
from ipolens.storage import SqlIpoRepository, create_session_factory

CHITTORGARH = FIXTURES_DIR / "chittorgarh"

PAGES = {
    "/ipo/ipo_list.asp": "ipo_list.html",
    "/report/sme-ipo-list-in-india/702/": "sme_list.html",
    "/report/ipo-subscription-status-live-mainboard-sme/21/": "subscription.html",
    "/report/ipo-grey-market-premium-latest-grey-market-premium-702/": "gmp.html",
}


def chittorgarh_client(state: dict) -> httpx.AsyncClient:
    """Serve fixture pages; everything fails while ``state['down']`` is set."""

    def handler(request: httpx.Request) -> httpx.Response:
        page = PAGES.get(request.url.path)
        if state["down"] or page is None:
            return httpx.Response(503)
        return httpx.Response(200, text=(CHITTORGARH / page).read_text(encoding="utf-8"))

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def nse_listing(*names: str) -> list[IpoData]:
    rows = {
        "ABC": IpoData(
            source="nse",
            symbol="ABCTECH",
            company_name="ABC Technologies Ltd",
            status=IpoStatus.OPEN,
            open_date=date(2025, 6, 10),
            price_max=100.0,
            pe_ratio=35.2,
            sector_pe_median=30.0,
        ),
        "NOVA": IpoData(
            source="nse",
            company_name="Nova Energy Ltd",
            status=IpoStatus.UPCOMING,
            price_max=340.0,
        ),
    }
    return [rows[name] for name in names]


@pytest.fixture
def pipeline(app_config, tmp_path):
    """Orchestrator over a file database, with snapshots enabled."""
    state = {"down": False}
    nse = FakeScraper("nse", ipos=nse_listing("ABC", "NOVA"))
    scraper_config = ScraperConfig(retry_attempts=0, retry_delay_seconds=0, listing_cache_seconds=0)
    chittorgarh = ChittorgarhScraper("https://www.chittorgarh.com", scraper_config, chittorgarh_client(state))

    registry = make_registry(nse, chittorgarh, priority=["nse", "chittorgarh"])
    aggregator = Aggregator(registry, app_config.aggregator, app_config.circuit_breaker)
    repository = SqlIpoRepository(create_session_factory(f"sqlite:///{(tmp_path / 'ipolens.db').as_posix()}"))
    storage = app_config.storage.model_copy(update={"snapshot_enabled": True})
    orchestrator = SyncOrchestrator(aggregator, repository, storage=storage)
    return orchestrator, nse, state


class TestSyncPipeline:
    """Integration tests across scraping, merging, storage and the API."""

    @pytest.mark.asyncio
    async def test_first_sync_merges_and_stores(self, pipeline):
        """Test merged, scored rows after one sync."""
        orchestrator, _, _ = pipeline

        result = await orchestrator.sync()

        assert result.status == SyncStatus.COMPLETED
        assert result.created == 4
        repository = orchestrator.repository

        abc = repository.find_by_symbol("ABC")
        assert abc.sources == {"nse", "chittorgarh"}
        assert abc.confidence == Confidence.HIGH
        assert abc.status == IpoStatus.OPEN
        assert (abc.price_min, abc.price_max, abc.lot_size) == (95.0, 100.0, 150)
        assert abc.subscription_total == 15.3
        assert abc.gmp == 25.0
        assert abc.pe_ratio == 35.2
        assert abc.overall_score is not None

        xyz = repository.find_by_symbol("XYZFOODS")
        assert xyz.sources == {"chittorgarh"}
        assert xyz.confidence == Confidence.LOW

        snapshots = list(orchestrator.storage.snapshot_dir.glob("ipos_*.parquet"))
        assert len(snapshots) == 1
        assert pl.read_parquet(snapshots[0]).height == 4

    @pytest.mark.asyncio
    async def test_clean_sync_archives_and_outage_preserves(self, pipeline):
        """Test archiving on a clean run and no writes during an outage."""
        orchestrator, nse, state = pipeline
        await orchestrator.sync()

        nse.data[DataKind.IPOS] = nse_listing("ABC")
        cleaned = await orchestrator.sync(clean=True)

        assert cleaned.marked_as_listed == 1
        nova = orchestrator.repository.find_by_symbol("NOVAENERGY")
        assert nova.status == IpoStatus.LISTED
        assert nova.archived_at is not None

        nse.error = "HTTP 403"
        state["down"] = True
        outage = await orchestrator.sync(clean=True)

        assert outage.status == SyncStatus.TOTAL_OUTAGE
        assert orchestrator.repository.find_by_symbol("ABC").status == IpoStatus.OPEN

    @pytest.mark.asyncio
    async def test_api_serves_synced_rows(self, pipeline):
        """Test reading the synced rows through the REST API."""
        orchestrator, _, _ = pipeline
        await orchestrator.sync()

        app = create_app()
        app.dependency_overrides[get_repository] = lambda: orchestrator.repository
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        client = TestClient(app)

        listing = client.get("/api/v1/ipos", params={"status": "open"}).json()
        assert [row["symbol"] for row in listing["data"]] == ["ABC"]

        sources = client.get("/api/v1/admin/sources").json()
        assert sources["sources"]["chittorgarh"]["successes"] == 3
        assert sources["sync_running"] is False
