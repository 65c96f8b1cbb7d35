"""Provider-agnostic record shapes.

Raw records (`IpoData`, `SubscriptionData`, `GmpData`) live for one
aggregation pass. Every numeric field is nullable: ``None`` means the source
did not report it, never zero.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class DataKind(str, Enum):
    """The three operations a source can support."""

    IPOS = "ipos"
    SUBSCRIPTIONS = "subscriptions"
    GMP = "gmp"


class IpoStatus(str, Enum):
    UPCOMING = "upcoming"
    OPEN = "open"
    CLOSED = "closed"
    LISTED = "listed"


ACTIVE_STATUSES = (IpoStatus.UPCOMING, IpoStatus.OPEN)


class Confidence(str, Enum):
    """How well a merged record is corroborated across sources."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]


class RiskLevel(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class GmpTrend(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Raw records
# ============================================================================


class RawRecord(BaseModel):
    """Fields common to every raw record.

    ``symbol`` may be empty; the aggregator derives the join key from
    ``company_name`` in that case.
    """

    model_config = ConfigDict(frozen=True)

    # Raw attribute -> merged field name, for attributes whose names differ
    field_map: ClassVar[dict[str, str]] = {}
    identity_fields: ClassVar[frozenset[str]] = frozenset({"source", "symbol", "company_name", "as_of"})

    source: str
    symbol: str = ""
    company_name: str = ""

    @property
    def display_name(self) -> str:
        return self.company_name or self.symbol

    def field_values(self) -> dict[str, Any]:
        """Reported (non-null) values keyed by merged field name."""
        values: dict[str, Any] = {}
        if self.company_name:
            values["company_name"] = self.company_name
        for name, value in self:
            if name in self.identity_fields or value is None:
                continue
            values[self.field_map.get(name, name)] = value
        return values


class IpoData(RawRecord):
    """One IPO listing row as reported by a single source."""

    status: IpoStatus | None = None
    ipo_type: str | None = None
    sector: str | None = None
    external_id: str | None = None

    open_date: date | None = None
    close_date: date | None = None
    allotment_date: date | None = None
    listing_date: date | None = None

    price_min: float | None = None
    price_max: float | None = None
    lot_size: int | None = None
    issue_size_crores: float | None = None
    fresh_issue_crores: float | None = None
    ofs_ratio: float | None = None

    revenue_growth: float | None = None
    ebitda_margin: float | None = None
    pat_margin: float | None = None
    roe: float | None = None
    roce: float | None = None
    debt_to_equity: float | None = None
    pe_ratio: float | None = None
    pb_ratio: float | None = None
    sector_pe_median: float | None = None
    promoter_holding: float | None = None
    post_ipo_promoter_holding: float | None = None


class SubscriptionData(RawRecord):
    """Subscription multiples (times subscribed) per investor category."""

    field_map: ClassVar[dict[str, str]] = {
        "qib": "subscription_qib",
        "nii": "subscription_nii",
        "retail": "subscription_retail",
        "employee": "subscription_employee",
        "total": "subscription_total",
    }

    qib: float | None = None
    nii: float | None = None
    retail: float | None = None
    employee: float | None = None
    total: float | None = None
    as_of: datetime | None = None


class GmpData(RawRecord):
    """Grey market premium quote."""

    field_map: ClassVar[dict[str, str]] = {"expected_listing": "expected_listing_price"}

    gmp: float | None = None
    gmp_percent: float | None = None
    expected_listing: float | None = None
    as_of: datetime | None = None


class GmpPoint(BaseModel):
    """One dated entry of a GMP history."""

    as_of: date
    gmp: float
    gmp_percent: float | None = None
    estimated_listing: float | None = None


T = TypeVar("T", bound=BaseModel)


class ScraperResult(BaseModel, Generic[T]):
    """Outcome of one scraper operation; scrapers never raise past this."""

    source: str
    kind: DataKind
    success: bool
    data: list[T] = Field(default_factory=list)
    response_time_ms: float = 0.0
    error: str | None = None
    supported: bool = True

    @property
    def contributed(self) -> bool:
        """True when this result actually carried data from a live fetch."""
        return self.success and self.supported


class SourceOutcome(BaseModel):
    """Summary of one source operation within an aggregation pass."""

    source: str
    kind: DataKind
    success: bool
    count: int
    response_time_ms: float
    error: str | None = None


# ============================================================================
# Merged and derived records
# ============================================================================


class ScoreResult(BaseModel):
    """Derived scores for one merged IPO."""

    model_config = ConfigDict(frozen=True)

    fundamentals_score: float
    valuation_score: float
    governance_score: float
    overall_score: float
    risk_level: RiskLevel
    red_flags: tuple[str, ...] = ()
    pros: tuple[str, ...] = ()


class MergedIpoRecord(BaseModel):
    """The unified record for one IPO across all sources."""

    symbol: str
    company_name: str

    status: IpoStatus | None = None
    ipo_type: str | None = None
    sector: str | None = None
    external_id: str | None = None

    open_date: date | None = None
    close_date: date | None = None
    allotment_date: date | None = None
    listing_date: date | None = None

    price_min: float | None = None
    price_max: float | None = None
    lot_size: int | None = None
    issue_size_crores: float | None = None
    fresh_issue_crores: float | None = None
    ofs_ratio: float | None = None

    revenue_growth: float | None = None
    ebitda_margin: float | None = None
    pat_margin: float | None = None
    roe: float | None = None
    roce: float | None = None
    debt_to_equity: float | None = None
    pe_ratio: float | None = None
    pb_ratio: float | None = None
    sector_pe_median: float | None = None
    promoter_holding: float | None = None
    post_ipo_promoter_holding: float | None = None

    subscription_qib: float | None = None
    subscription_nii: float | None = None
    subscription_retail: float | None = None
    subscription_employee: float | None = None
    subscription_total: float | None = None

    gmp: float | None = None
    gmp_percent: float | None = None
    expected_listing_price: float | None = None
    gmp_trend: GmpTrend | None = None

    sources: set[str] = Field(default_factory=set)
    confidence: Confidence = Confidence.LOW
    needs_review: bool = False
    conflicts: list[str] = Field(default_factory=list)

    fundamentals_score: float | None = None
    valuation_score: float | None = None
    governance_score: float | None = None
    overall_score: float | None = None
    risk_level: RiskLevel | None = None
    red_flags: list[str] = Field(default_factory=list)
    pros: list[str] = Field(default_factory=list)

    last_updated: datetime = Field(default_factory=utcnow)

    def with_scores(self, scores: ScoreResult) -> "MergedIpoRecord":
        """Return a copy carrying the derived scoring fields."""
        return self.model_copy(
            update={
                "fundamentals_score": scores.fundamentals_score,
                "valuation_score": scores.valuation_score,
                "governance_score": scores.governance_score,
                "overall_score": scores.overall_score,
                "risk_level": scores.risk_level,
                "red_flags": list(scores.red_flags),
                "pros": list(scores.pros),
            }
        )


class StoredIpo(MergedIpoRecord):
    """A persisted IPO row."""

    id: int
    created_at: datetime
    archived_at: datetime | None = None


class AggregationResult(BaseModel):
    """Merged records plus per-source bookkeeping for one pass."""

    records: list[MergedIpoRecord] = Field(default_factory=list)
    source_results: list[SourceOutcome] = Field(default_factory=list)
    total_sources: int = 0
    successful_sources: int = 0
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def total_outage(self) -> bool:
        """Every source that was asked for data failed."""
        return self.total_sources > 0 and self.successful_sources == 0

    def get(self, symbol: str) -> MergedIpoRecord | None:
        return next((r for r in self.records if r.symbol == symbol), None)


class SyncStatus(str, Enum):
    COMPLETED = "completed"
    TOTAL_OUTAGE = "total_outage"
    REJECTED = "rejected"
    FAILED = "failed"


class SyncResult(BaseModel):
    """Summary returned to whoever triggered a sync."""

    success: bool
    status: SyncStatus
    clean: bool = False
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    marked_as_listed: int = 0
    total: int = 0
    error: str | None = None
    trace_id: str | None = None
    source_results: list[SourceOutcome] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    duration_ms: float = 0.0


class AnalysisResult(BaseModel):
    """Narrative analysis of one IPO."""

    summary: str
    recommendation: str
    risk_assessment: str
    key_insights: list[str] = Field(default_factory=list)
    provider: str | None = None
    fallback: bool = False
