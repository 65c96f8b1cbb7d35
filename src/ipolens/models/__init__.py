"""Record types shared across scrapers, aggregation, scoring and storage."""

from .records import (
    ACTIVE_STATUSES,
    AggregationResult,
    AnalysisResult,
    Confidence,
    DataKind,
    GmpData,
    GmpPoint,
    GmpTrend,
    IpoData,
    IpoStatus,
    MergedIpoRecord,
    RawRecord,
    RiskLevel,
    ScoreResult,
    ScraperResult,
    SourceOutcome,
    StoredIpo,
    SubscriptionData,
    SyncResult,
    SyncStatus,
    utcnow,
)

KIND_MODELS = {
    DataKind.IPOS: IpoData,
    DataKind.SUBSCRIPTIONS: SubscriptionData,
    DataKind.GMP: GmpData,
}

__all__ = [
    "ACTIVE_STATUSES",
    "AggregationResult",
    "AnalysisResult",
    "Confidence",
    "DataKind",
    "GmpData",
    "GmpPoint",
    "GmpTrend",
    "IpoData",
    "IpoStatus",
    "KIND_MODELS",
    "MergedIpoRecord",
    "RawRecord",
    "RiskLevel",
    "ScoreResult",
    "ScraperResult",
    "SourceOutcome",
    "StoredIpo",
    "SubscriptionData",
    "SyncResult",
    "SyncStatus",
    "utcnow",
]
