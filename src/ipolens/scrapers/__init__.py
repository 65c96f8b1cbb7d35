"""Source scrapers for Indian IPO data providers."""

from .base import BaseScraper
from .chittorgarh import ChittorgarhScraper
from .groww import GrowwScraper
from .investorgain import InvestorGainScraper
from .nse import NseScraper
from .nsetools import NseToolsScraper
from .registry import SourceRegistry, build_registry, create_scraper

__all__ = [
    "BaseScraper",
    "ChittorgarhScraper",
    "GrowwScraper",
    "InvestorGainScraper",
    "NseScraper",
    "NseToolsScraper",
    "SourceRegistry",
    "build_registry",
    "create_scraper",
]
