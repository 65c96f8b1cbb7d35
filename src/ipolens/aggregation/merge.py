"""Field-level merge of raw records that describe the same IPO.

Every merged field belongs to one category, and each category has one
reducer:

=============  ==============================================  ========
Category       Reducer                                         Compared
=============  ==============================================  ========
IDENTITY       highest-priority non-null value                 yes
PRIORITY       highest-priority non-null value                 yes
AVERAGED       mean of all non-null values                     no
TEXT           highest-priority non-null value                 no
=============  ==============================================  ========

"Compared" fields feed the agreement check behind ``confidence``; a
disagreement never blocks the merge, it is logged as ``merge_ambiguity``
and recorded in ``conflicts``.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from statistics import fmean
from typing import Any

from ipolens.models import Confidence, GmpPoint, GmpTrend, MergedIpoRecord, RawRecord
from ipolens.scrapers.parsing import name_fingerprint, normalize_symbol
from ipolens.utils.logger import get_logger
from ipolens.utils.metrics import merge_conflicts

logger = get_logger(__name__)

GMP_DEAD_BAND = 5.0


class FieldCategory(str, Enum):
    IDENTITY = "identity"
    PRIORITY = "priority"
    AVERAGED = "averaged"
    TEXT = "text"


IDENTITY_FIELDS = ("company_name", "open_date", "close_date", "allotment_date", "listing_date")
TEXT_FIELDS = ("status", "ipo_type", "sector", "external_id")
SUBSCRIPTION_FIELDS = (
    "subscription_qib",
    "subscription_nii",
    "subscription_retail",
    "subscription_employee",
    "subscription_total",
)
PRIORITY_FIELDS = (
    "price_min",
    "price_max",
    "lot_size",
    "issue_size_crores",
    "fresh_issue_crores",
    "ofs_ratio",
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
    "gmp",
    "gmp_percent",
    "expected_listing_price",
)

# Names differ in spelling across sources by nature; they only pick a value
_NOT_COMPARED = frozenset({"company_name"})


def field_categories(average_subscriptions: bool = True) -> dict[str, FieldCategory]:
    """Category of every mergeable field under the given policy."""
    categories = {name: FieldCategory.IDENTITY for name in IDENTITY_FIELDS}
    categories.update({name: FieldCategory.TEXT for name in TEXT_FIELDS})
    categories.update({name: FieldCategory.PRIORITY for name in PRIORITY_FIELDS})
    subscription_category = FieldCategory.AVERAGED if average_subscriptions else FieldCategory.PRIORITY
    categories.update({name: subscription_category for name in SUBSCRIPTION_FIELDS})
    return categories


# ============================================================================
# Reducers
# ============================================================================


def first_value(values: Sequence[Any]) -> Any:
    """Values arrive in priority order; the head wins."""
    return values[0]


def average_value(values: Sequence[Any]) -> float:
    return round(fmean(float(v) for v in values), 2)


REDUCERS: dict[FieldCategory, Callable[[Sequence[Any]], Any]] = {
    FieldCategory.IDENTITY: first_value,
    FieldCategory.PRIORITY: first_value,
    FieldCategory.TEXT: first_value,
    FieldCategory.AVERAGED: average_value,
}


def is_compared(name: str, category: FieldCategory) -> bool:
    return category in (FieldCategory.IDENTITY, FieldCategory.PRIORITY) and name not in _NOT_COMPARED


def values_agree(a: Any, b: Any, tolerance: float = 0.05) -> bool:
    """Numbers agree within a relative tolerance; everything else must be equal."""
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        scale = max(abs(a), abs(b))
        return scale == 0 or abs(a - b) <= tolerance * scale
    return a == b


def record_key(record: RawRecord) -> str:
    """Join key of a raw record: the normalized company name, else the symbol."""
    return normalize_symbol(record.company_name or record.symbol)


def confidence_for(source_count: int, overlapped: bool, conflicted: bool) -> Confidence:
    """Confidence ladder.

    - one source: LOW
    - two sources: LOW on any conflict, HIGH when overlapping fields all
      agree, MEDIUM when nothing overlapped
    - three or more sources: HIGH
    """
    if source_count >= 3:
        return Confidence.HIGH
    if source_count <= 1 or conflicted:
        return Confidence.LOW
    return Confidence.HIGH if overlapped else Confidence.MEDIUM


# ============================================================================
# Group merge
# ============================================================================


@dataclass
class MergePolicy:
    """How one aggregation pass resolves overlapping values.

    Attributes:
        priority_for: Source ids ranked for a field, highest first
        average_subscriptions: Average subscription multiples across sources
        tolerance: Relative tolerance for numeric agreement
    """

    priority_for: Callable[[str], Sequence[str]]
    average_subscriptions: bool = True
    tolerance: float = 0.05
    categories: dict[str, FieldCategory] = field(init=False)

    def __post_init__(self) -> None:
        self.categories = field_categories(self.average_subscriptions)


def _values_by_source(records: Sequence[RawRecord]) -> tuple[dict[str, dict[str, Any]], list[str]]:
    """Reported values per source, plus collision notes.

    A source contributing two differently named issuers under one key keeps
    only its first; duplicates of the same name fill each other's gaps.
    """
    per_source: dict[str, dict[str, Any]] = {}
    first_name: dict[str, tuple[str, str]] = {}
    collisions: list[str] = []

    for record in records:
        fingerprint = name_fingerprint(record.display_name)
        seen = first_name.get(record.source)
        if seen is None:
            first_name[record.source] = (fingerprint, record.display_name)
        elif fingerprint and seen[0] and fingerprint != seen[0]:
            note = f"name collision in {record.source}: '{seen[1]}' vs '{record.display_name}'"
            if note not in collisions:
                collisions.append(note)
            continue

        values = per_source.setdefault(record.source, {})
        for name, value in record.field_values().items():
            values.setdefault(name, value)

    return per_source, collisions


def merge_group(key: str, records: Sequence[RawRecord], policy: MergePolicy) -> MergedIpoRecord:
    """Merge all raw records sharing one join key into a single record."""
    per_source, collisions = _values_by_source(records)

    merged: dict[str, Any] = {}
    conflicts = list(collisions)
    overlapped = False

    for name, category in policy.categories.items():
        ranked = [s for s in policy.priority_for(name) if s in per_source]
        ranked += [s for s in per_source if s not in ranked]
        contributions = [(s, per_source[s][name]) for s in ranked if name in per_source[s]]
        if not contributions:
            continue

        values = [value for _, value in contributions]
        merged[name] = REDUCERS[category](values)

        if len(contributions) < 2 or not is_compared(name, category):
            continue
        overlapped = True
        chosen_source, chosen = contributions[0]
        disagreeing = [(s, v) for s, v in contributions[1:] if not values_agree(chosen, v, policy.tolerance)]
        if disagreeing:
            detail = ", ".join(f"{s}={_display(v)}" for s, v in disagreeing)
            conflicts.append(f"{name}: kept {chosen_source}={_display(chosen)} over {detail}")
            merge_conflicts.labels(field=name).inc()
            logger.warning(
                "merge_ambiguity",
                symbol=key,
                field=name,
                chosen_source=chosen_source,
                chosen=_display(chosen),
                others={s: _display(v) for s, v in disagreeing},
            )

    field_conflicts = len(conflicts) - len(collisions)
    company_name = merged.pop("company_name", None) or _fallback_name(records, key)

    return MergedIpoRecord(
        symbol=key,
        company_name=company_name,
        sources=set(per_source),
        confidence=confidence_for(len(per_source), overlapped, field_conflicts > 0),
        needs_review=bool(collisions),
        conflicts=conflicts,
        **merged,
    )


def merge_records(records: Sequence[RawRecord], policy: MergePolicy) -> list[MergedIpoRecord]:
    """Group raw records by join key and merge each group.

    Records whose key normalizes to an empty string are dropped.
    """
    groups: dict[str, list[RawRecord]] = {}
    for record in records:
        key = record_key(record)
        if not key:
            logger.debug("record_without_key_skipped", source=record.source)
            continue
        groups.setdefault(key, []).append(record)
    return [merge_group(key, group, policy) for key, group in groups.items()]


def _fallback_name(records: Sequence[RawRecord], key: str) -> str:
    return next((r.symbol for r in records if r.symbol), key)


def _display(value: Any) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


# ============================================================================
# GMP trend
# ============================================================================


def gmp_trend(current: float | None, previous: float | None, dead_band: float = GMP_DEAD_BAND) -> GmpTrend | None:
    """Direction of a GMP move, ignoring moves within ``dead_band`` rupees."""
    if current is None or previous is None:
        return None
    change = current - previous
    if change > dead_band:
        return GmpTrend.RISING
    if change < -dead_band:
        return GmpTrend.FALLING
    return GmpTrend.STABLE


def trend_from_history(points: Sequence[GmpPoint], dead_band: float = GMP_DEAD_BAND) -> GmpTrend | None:
    """Trend between the last two points of a GMP history."""
    if len(points) < 2:
        return None
    ordered = sorted(points, key=lambda point: point.as_of)
    return gmp_trend(ordered[-1].gmp, ordered[-2].gmp, dead_band)
