"""Tests for the source registry and scraper construction."""

import pytest
from conftest import FakeScraper, make_registry

from ipolens.core.config import AppConfig, SourcesConfig
from ipolens.core.errors import ConfigError
from ipolens.scrapers import ChittorgarhScraper, NseToolsScraper, build_registry, create_scraper
from ipolens.scrapers.registry import SourceRegistry, field_group


class TestSourceRegistry:
    """Test suite for SourceRegistry ordering and lookups."""

    def test_iterates_in_priority_order(self):
        """Test that iteration follows the global priority, not registration."""
        registry = make_registry(
            FakeScraper("groww"), FakeScraper("nse"), priority=["nse", "groww"]
        )

        assert [s.source_id for s in registry] == ["nse", "groww"]
        assert len(registry) == 2

    def test_unranked_sources_come_last_in_registration_order(self):
        """Test the fallback ordering for sources missing from priority."""
        registry = SourceRegistry(priority=["nse"])
        for source_id in ("investorgain", "chittorgarh", "nse"):
            registry.register(FakeScraper(source_id))

        assert registry.source_ids == ["nse", "investorgain", "chittorgarh"]

    def test_field_priority_overrides_group(self):
        """Test that market sentiment fields prefer the configured sources."""
        registry = SourceRegistry(
            priority=["nse", "groww", "investorgain"],
            field_priority={"market_sentiment": ["investorgain"]},
        )
        for source_id in ("nse", "groww", "investorgain"):
            registry.register(FakeScraper(source_id))

        assert registry.priority_for("gmp") == ["investorgain", "nse", "groww"]
        assert registry.priority_for("price_max") == ["nse", "groww", "investorgain"]

    def test_duplicate_registration_rejected(self):
        """Test that a source id can only be registered once."""
        registry = make_registry(FakeScraper("nse"))

        with pytest.raises(ConfigError, match="registered twice"):
            registry.register(FakeScraper("nse"))

    def test_unknown_field_group_rejected(self):
        """Test that typos in field_priority fail fast."""
        with pytest.raises(ConfigError, match="Unknown field groups"):
            SourceRegistry(priority=[], field_priority={"sentiment": ["investorgain"]})

    def test_field_groups(self):
        """Test field-to-group lookup."""
        assert field_group("subscription_total") == "subscription"
        assert field_group("listing_date") == "schedule"
        assert field_group("company_name") is None

    @pytest.mark.asyncio
    async def test_aclose_closes_every_scraper(self):
        """Test that closing the registry closes its scrapers."""
        scrapers = [FakeScraper("nse"), FakeScraper("groww")]
        registry = make_registry(*scrapers)

        await registry.aclose()

        assert all(s.closed for s in scrapers)


class TestBuildRegistry:
    """Test suite for configuration-driven construction."""

    def test_builds_enabled_sources(self):
        """Test that only enabled sources are registered."""
        config = AppConfig(
            sources=SourcesConfig(enabled=["chittorgarh", "nsetools"], priority=["nsetools", "chittorgarh"])
        )

        registry = build_registry(config)

        assert registry.source_ids == ["nsetools", "chittorgarh"]
        assert isinstance(registry.get("chittorgarh"), ChittorgarhScraper)
        assert isinstance(registry.get("nsetools"), NseToolsScraper)
        assert registry.get("groww") is None

    def test_create_scraper_rejects_unknown_source(self):
        """Test the error for an unknown source id."""
        with pytest.raises(ConfigError, match="Unknown source id"):
            create_scraper("moneycontrol", AppConfig())

    def test_sources_config_rejects_unknown_ids(self):
        """Test validation of source ids in configuration."""
        with pytest.raises(ValueError, match="Unknown source ids"):
            SourcesConfig(priority=["nse", "moneycontrol"])
