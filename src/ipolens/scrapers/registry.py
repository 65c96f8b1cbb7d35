"""Explicit registry of source scrapers and their merge priority.

The registry is constructed once and handed to the aggregator, so tests can
register fakes without touching module state.

Priority rules:
    - ``priority`` ranks sources for every field, highest first
    - ``field_priority`` overrides the ranking for a field group; sources it
      does not name keep their global order after the named ones
    - sources absent from ``priority`` rank last
    - equal rank resolves to the source registered first
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence

import httpx

from ipolens.core.config import KNOWN_SOURCES, AppConfig, get_config
from ipolens.core.errors import ConfigError
from ipolens.core.interfaces import SourceScraper
from ipolens.utils.logger import get_logger

logger = get_logger(__name__)

# Field groups addressable from SourcesConfig.field_priority
FIELD_GROUPS: dict[str, frozenset[str]] = {
    "market_sentiment": frozenset({"gmp", "gmp_percent", "expected_listing_price"}),
    "subscription": frozenset(
        {
            "subscription_qib",
            "subscription_nii",
            "subscription_retail",
            "subscription_employee",
            "subscription_total",
        }
    ),
    "schedule": frozenset({"open_date", "close_date", "allotment_date", "listing_date", "status"}),
    "financials": frozenset(
        {
            "revenue_growth",
            "ebitda_margin",
            "pat_margin",
            "roe",
            "roce",
            "debt_to_equity",
            "pe_ratio",
            "pb_ratio",
            "sector_pe_median",
            "promoter_holding",
            "post_ipo_promoter_holding",
        }
    ),
}


def field_group(field: str) -> str | None:
    return next((group for group, fields in FIELD_GROUPS.items() if field in fields), None)


class SourceRegistry:
    """Ordered collection of scrapers with priority lookup."""

    def __init__(
        self,
        priority: Sequence[str] = (),
        field_priority: dict[str, Sequence[str]] | None = None,
    ):
        unknown_groups = set(field_priority or {}) - set(FIELD_GROUPS)
        if unknown_groups:
            raise ConfigError(
                f"Unknown field groups in field_priority: {sorted(unknown_groups)}",
                recovery_hint=f"Use one of {sorted(FIELD_GROUPS)}",
            )
        self.priority = list(priority)
        self.field_priority = {group: list(order) for group, order in (field_priority or {}).items()}
        self._scrapers: dict[str, SourceScraper] = {}

    def register(self, scraper: SourceScraper) -> None:
        if scraper.source_id in self._scrapers:
            raise ConfigError(f"Source '{scraper.source_id}' registered twice")
        self._scrapers[scraper.source_id] = scraper

    def get(self, source_id: str) -> SourceScraper | None:
        return self._scrapers.get(source_id)

    def __len__(self) -> int:
        return len(self._scrapers)

    def __iter__(self) -> Iterator[SourceScraper]:
        """Scrapers in global priority order."""
        return iter(self._scrapers[source_id] for source_id in self.ordered())

    @property
    def source_ids(self) -> list[str]:
        return self.ordered()

    def ordered(self, preferred: Sequence[str] = ()) -> list[str]:
        """Registered source ids, ``preferred`` first, then global priority."""
        registration = list(self._scrapers)

        def rank(source_id: str) -> tuple[int, int, int]:
            preferred_rank = preferred.index(source_id) if source_id in preferred else len(preferred)
            global_rank = self.priority.index(source_id) if source_id in self.priority else len(self.priority)
            return preferred_rank, global_rank, registration.index(source_id)

        return sorted(registration, key=rank)

    def priority_for(self, field: str) -> list[str]:
        """Source ids ranked for one merged field, highest priority first."""
        group = field_group(field)
        return self.ordered(self.field_priority.get(group, ()) if group else ())

    async def aclose(self) -> None:
        for scraper in self._scrapers.values():
            await scraper.aclose()


def create_scraper(source_id: str, config: AppConfig, client: httpx.AsyncClient | None = None) -> SourceScraper:
    """Instantiate the scraper for one known source id."""
    from ipolens.scrapers.chittorgarh import ChittorgarhScraper
    from ipolens.scrapers.groww import GrowwScraper
    from ipolens.scrapers.investorgain import InvestorGainScraper
    from ipolens.scrapers.nse import NseScraper
    from ipolens.scrapers.nsetools import NseToolsScraper

    sources = config.sources
    if source_id == "chittorgarh":
        return ChittorgarhScraper(sources.chittorgarh_base_url, config.scraper, client)
    if source_id == "investorgain":
        return InvestorGainScraper(sources, config.scraper, client)
    if source_id == "groww":
        return GrowwScraper(sources.groww_api_url, config.scraper, client)
    if source_id == "nse":
        return NseScraper(sources, config.scraper, client)
    if source_id == "nsetools":
        return NseToolsScraper(sources, config.scraper, client)
    raise ConfigError(
        f"Unknown source id '{source_id}'",
        recovery_hint=f"Known sources: {', '.join(KNOWN_SOURCES)}",
    )


def build_registry(config: AppConfig | None = None) -> SourceRegistry:
    """Build the registry for every enabled source, in configured order."""
    config = config or get_config()
    registry = SourceRegistry(config.sources.priority, config.sources.field_priority)
    for source_id in config.sources.enabled:
        registry.register(create_scraper(source_id, config))
    logger.info("source_registry_built", sources=registry.source_ids)
    return registry
