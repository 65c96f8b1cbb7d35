import sys
from pathlib import Path

# Ensure src/ is on sys.path for imports like `import ipolens.*`
PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_PATH = PROJECT_ROOT / "src"
if SRC_PATH.exists():
    sys.path.insert(0, str(SRC_PATH))

import asyncio  # noqa: E402
from datetime import date  # noqa: E402

import pytest  # noqa: E402
import structlog  # noqa: E402

from ipolens.core.config import (  # noqa: E402
    AggregatorConfig,
    AppConfig,
    CircuitBreakerConfig,
    ScraperConfig,
    StorageConfig,
)
from ipolens.core.interfaces import SourceScraper  # noqa: E402
from ipolens.models import (  # noqa: E402
    Confidence,
    DataKind,
    GmpData,
    IpoData,
    IpoStatus,
    MergedIpoRecord,
    ScraperResult,
    SubscriptionData,
)
from ipolens.scrapers.registry import SourceRegistry  # noqa: E402
from ipolens.storage import SqlIpoRepository, create_session_factory  # noqa: E402

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"

# Keep log lines out of captured CLI output
structlog.configure(
    processors=[structlog.contextvars.merge_contextvars, structlog.processors.add_log_level],
    logger_factory=structlog.ReturnLoggerFactory(),
)


class FakeScraper(SourceScraper):
    """In-memory source with canned data per operation.

    Pass ``None`` for a kind to mark it unsupported, an ``error`` message to
    make every supported operation fail, or ``delay`` to make every call slow.
    """

    def __init__(
        self,
        source_id: str,
        ipos=(),
        subscriptions=None,
        gmp=None,
        error: str | None = None,
        delay: float = 0.0,
    ):
        self.source_id = source_id
        self.data = {DataKind.IPOS: ipos, DataKind.SUBSCRIPTIONS: subscriptions, DataKind.GMP: gmp}
        self.error = error
        self.delay = delay
        self.calls: list[DataKind] = []
        self.closed = False

    async def _result(self, kind: DataKind, model):
        self.calls.append(kind)
        if self.delay:
            await asyncio.sleep(self.delay)
        records = self.data[kind]
        if records is None:
            return ScraperResult[model](source=self.source_id, kind=kind, success=True, supported=False)
        if self.error:
            return ScraperResult[model](source=self.source_id, kind=kind, success=False, error=self.error)
        return ScraperResult[model](
            source=self.source_id, kind=kind, success=True, data=list(records), response_time_ms=12.0
        )

    async def get_ipos(self):
        return await self._result(DataKind.IPOS, IpoData)

    async def get_subscriptions(self):
        return await self._result(DataKind.SUBSCRIPTIONS, SubscriptionData)

    async def get_gmp(self):
        return await self._result(DataKind.GMP, GmpData)

    async def aclose(self) -> None:
        self.closed = True


def make_registry(*scrapers, priority=None, field_priority=None) -> SourceRegistry:
    registry = SourceRegistry(
        priority or [scraper.source_id for scraper in scrapers],
        field_priority or {},
    )
    for scraper in scrapers:
        registry.register(scraper)
    return registry


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """Configuration isolated to a temporary data directory, no retries."""
    return AppConfig(
        storage=StorageConfig(data_dir=tmp_path / "data", snapshot_enabled=False),
        scraper=ScraperConfig(retry_attempts=0, retry_delay_seconds=0, listing_cache_seconds=0),
        aggregator=AggregatorConfig(source_timeout_seconds=1.0),
        circuit_breaker=CircuitBreakerConfig(failure_threshold=3, recovery_timeout_seconds=60),
    )


@pytest.fixture
def repository() -> SqlIpoRepository:
    """Repository over a fresh in-memory SQLite database."""
    return SqlIpoRepository(create_session_factory("sqlite://"))


@pytest.fixture
def merged_record() -> MergedIpoRecord:
    """A fully populated, two-source merged record."""
    return MergedIpoRecord(
        symbol="ABC",
        company_name="ABC Technologies Ltd",
        status=IpoStatus.OPEN,
        sector="Information Technology",
        open_date=date(2025, 6, 10),
        close_date=date(2025, 6, 12),
        price_min=95.0,
        price_max=100.0,
        lot_size=150,
        issue_size_crores=125.0,
        ofs_ratio=0.2,
        revenue_growth=25.0,
        roe=20.0,
        roce=22.0,
        debt_to_equity=0.3,
        pe_ratio=30.0,
        sector_pe_median=35.0,
        promoter_holding=70.0,
        post_ipo_promoter_holding=60.0,
        subscription_total=12.5,
        gmp=25.0,
        gmp_percent=25.0,
        sources={"nse", "investorgain"},
        confidence=Confidence.HIGH,
    )
