"""Cross-source aggregation: fan-out, merge and confidence."""

from .aggregator import ALL_KINDS, Aggregator, SourceStats
from .merge import (
    FieldCategory,
    MergePolicy,
    confidence_for,
    gmp_trend,
    merge_group,
    merge_records,
    record_key,
    trend_from_history,
)

__all__ = [
    "ALL_KINDS",
    "Aggregator",
    "FieldCategory",
    "MergePolicy",
    "SourceStats",
    "confidence_for",
    "gmp_trend",
    "merge_group",
    "merge_records",
    "record_key",
    "trend_from_history",
]
