"""Unified application configuration with environment support.

Configuration hierarchy:
    1. Environment variables (highest priority)
    2. .env file
    3. Built-in defaults

Nested sections are addressable from the environment with a double
underscore, e.g. ``AGGREGATOR__SOURCE_TIMEOUT_SECONDS=5``.
"""

from __future__ import annotations

from datetime import time
from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_SOURCES = ("nse", "nsetools", "groww", "chittorgarh", "investorgain")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Environment(str, Enum):
    """Deployment environment."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class AIProvider(str, Enum):
    """Supported AI analysis providers."""

    NONE = "none"
    GEMINI = "gemini"
    MISTRAL = "mistral"
    OPENAI = "openai"


# ============================================================================
# Data Source Configuration
# ============================================================================


class SourcesConfig(BaseSettings):
    """Provider endpoints, enabled sources and merge priority."""

    enabled: list[str] = Field(
        default=list(KNOWN_SOURCES),
        description="Source ids to register with the aggregator",
    )
    priority: list[str] = Field(
        default=["nse", "nsetools", "groww", "chittorgarh", "investorgain"],
        description="Source ids from highest to lowest merge priority",
    )
    field_priority: dict[str, list[str]] = Field(
        default={"market_sentiment": ["investorgain", "chittorgarh"]},
        description="Per field-group priority overrides (group name -> source ids)",
    )

    chittorgarh_base_url: str = Field(default="https://www.chittorgarh.com")
    investorgain_api_url: str = Field(
        default="https://webnodejs.investorgain.com/cloud",
        description="InvestorGain JSON API root",
    )
    investorgain_report_path: str = Field(
        default="/report/data-read/331/1/{month}/{year}/{fiscal_year}/0/all",
        description="IPO report path template",
    )
    groww_api_url: str = Field(default="https://groww.in/v1/api/stocks_ipo/v1/ipo")
    nse_base_url: str = Field(default="https://www.nseindia.com")
    nse_session_refresh_seconds: int = Field(
        default=120,
        ge=10,
        description="Re-visit the NSE landing page after this many seconds",
    )

    @model_validator(mode="after")
    def validate_source_ids(self) -> "SourcesConfig":
        """Reject unknown source ids early."""
        referenced = set(self.enabled) | set(self.priority)
        for order in self.field_priority.values():
            referenced |= set(order)
        unknown = referenced - set(KNOWN_SOURCES)
        if unknown:
            raise ValueError(f"Unknown source ids: {sorted(unknown)}")
        return self

    model_config = SettingsConfigDict(env_prefix="SOURCES_", extra="allow")


# ============================================================================
# Scraper / Aggregator Configuration
# ============================================================================


class ScraperConfig(BaseSettings):
    """Data scraper behavior configuration."""

    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP request timeout in seconds",
    )
    retry_attempts: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Retries after the first failed request",
    )
    retry_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Base delay for exponential backoff between retries",
    )
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="HTTP User-Agent header")
    max_detail_requests: int = Field(
        default=10,
        ge=0,
        description="Per-IPO detail requests issued by sources that need them",
    )
    listing_cache_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Reuse a fetched listing for this long within one scraper",
    )

    model_config = SettingsConfigDict(env_prefix="SCRAPER_", extra="allow")


class AggregatorConfig(BaseSettings):
    """Fan-out and merge behavior."""

    source_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound for one source operation before it counts as failed",
    )
    average_subscriptions: bool = Field(
        default=True,
        description="Average subscription multiples across sources instead of taking priority",
    )
    agreement_tolerance: float = Field(
        default=0.05,
        ge=0,
        description="Relative tolerance when comparing overlapping numeric fields",
    )

    model_config = SettingsConfigDict(env_prefix="AGGREGATOR_", extra="allow")


class CircuitBreakerConfig(BaseSettings):
    """Circuit breaker for fault tolerance."""

    failure_threshold: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Consecutive failures before opening circuit",
    )
    recovery_timeout_seconds: int = Field(
        default=300,
        ge=1,
        le=3600,
        description="Time to wait before attempting recovery",
    )

    model_config = SettingsConfigDict(env_prefix="CIRCUIT_BREAKER_", extra="allow")


# ============================================================================
# Storage Configuration
# ============================================================================


class StorageConfig(BaseSettings):
    """Database and snapshot storage configuration."""

    data_dir: Path = Field(
        default=Path("./data"),
        description="Root data directory for database and snapshots",
    )
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL; defaults to a SQLite file in data_dir",
    )
    snapshot_enabled: bool = Field(default=True, description="Write a Parquet snapshot after each sync")
    parquet_compression: str = Field(
        default="snappy",
        description="Parquet compression codec (snappy, gzip, lz4, zstd)",
    )

    @property
    def resolved_database_url(self) -> str:
        return self.database_url or f"sqlite:///{(self.data_dir / 'ipolens.db').as_posix()}"

    @property
    def snapshot_dir(self) -> Path:
        return self.data_dir / "snapshots"

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="allow")


# ============================================================================
# AI Analysis Configuration
# ============================================================================


class AIConfig(BaseSettings):
    """AI analysis provider selection."""

    provider: AIProvider = Field(default=AIProvider.NONE, description="Provider used for analysis")
    api_key: str | None = Field(default=None, description="Credential for the selected provider")
    model: str | None = Field(default=None, description="Override the provider's default model")
    base_url: str | None = Field(default=None, description="OpenAI-compatible base URL override")
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=800, ge=1)
    timeout_seconds: float = Field(default=30.0, gt=0)

    model_config = SettingsConfigDict(env_prefix="AI_", extra="allow")


# ============================================================================
# Scheduler Configuration
# ============================================================================


class SchedulerConfig(BaseSettings):
    """Polling cadence and alert thresholds."""

    market_open: time = Field(default=time(9, 15), description="Bidding window start (IST)")
    market_close: time = Field(default=time(17, 30), description="Bidding window end (IST)")
    active_interval_seconds: int = Field(default=300, ge=10)
    idle_interval_seconds: int = Field(default=1800, ge=10)
    sync_interval_seconds: int = Field(default=3600, ge=60)

    subscription_critical: float = Field(default=20.0, description="Subscription multiple for critical alerts")
    subscription_warning: float = Field(default=10.0, description="Subscription multiple for warnings")
    subscription_momentum: float = Field(default=5.0, description="Jump in multiple between polls")
    gmp_change_percent: float = Field(default=10.0, description="GMP move that raises an alert")

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="allow")


# ============================================================================
# Observability Configuration
# ============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    format: str = Field(
        default="json",
        description="Log format (json, console)",
    )

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="allow")


# ============================================================================
# Unified Application Configuration
# ============================================================================


class AppConfig(BaseSettings):
    """Master configuration for IPO Lens.

    All sub-configurations are included here for easy access:
        config.sources.priority
        config.aggregator.source_timeout_seconds
        config.ai.provider
        etc.
    """

    environment: Environment = Field(default=Environment.DEV)

    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    scraper: ScraperConfig = Field(default_factory=ScraperConfig)
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    storage: StorageConfig = Field(default_factory=StorageConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    def is_dev(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEV

    def is_prod(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PROD


# Global configuration instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the global application configuration.

    Returns:
        AppConfig instance
    """
    return config


def reload_config() -> AppConfig:
    """Reload configuration from environment.

    Useful for testing or dynamic configuration changes.

    Returns:
        New AppConfig instance
    """
    global config
    config = AppConfig()
    return config
