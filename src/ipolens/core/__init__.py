"""Core infrastructure: configuration, errors and interfaces."""

from .config import AppConfig, Environment, get_config, reload_config
from .errors import (
    AnalysisProviderError,
    ConfigError,
    IpoLensError,
    PersistenceError,
    SourceFetchError,
    SourceParseError,
    SyncInProgressError,
    ValidationError,
)
from .interfaces import AnalysisProvider, IpoRepository, SourceScraper

__all__ = [
    # Config
    "AppConfig",
    "Environment",
    "get_config",
    "reload_config",
    # Errors
    "IpoLensError",
    "ValidationError",
    "SourceFetchError",
    "SourceParseError",
    "PersistenceError",
    "SyncInProgressError",
    "AnalysisProviderError",
    "ConfigError",
    # Interfaces
    "SourceScraper",
    "IpoRepository",
    "AnalysisProvider",
]
