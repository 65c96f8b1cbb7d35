"""Heuristic scoring of merged IPO records.

Scores are a pure function of a record's financial metrics and a
``ScoringPolicy``. A missing metric contributes nothing; it never
penalizes. All thresholds live in the policy so they can be tuned in one
place.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ipolens.models import MergedIpoRecord, RiskLevel, ScoreResult


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class ScoringPolicy:
    """Weights and thresholds for every scoring rule.

    Ratios (``ofs_ratio``, ``debt_to_equity``) are plain numbers; growth,
    margins, returns and holdings are percentages.
    """

    base_score: float = 5.0
    min_score: float = 0.0
    max_score: float = 10.0

    fundamentals_weight: float = 0.40
    valuation_weight: float = 0.35
    governance_weight: float = 0.25

    # Fundamentals: min(metric / divisor, cap)
    growth_divisor: float = 20.0
    growth_cap: float = 2.0
    roe_divisor: float = 15.0
    roe_cap: float = 2.0
    roce_divisor: float = 30.0
    roce_cap: float = 1.0

    # Valuation bands
    pe_sensitivity: float = 5.0
    pb_anchor: float = 3.0
    pb_divisor: float = 2.0
    band_low: float = -1.0
    band_high: float = 2.0

    # Governance
    promoter_holding_ceiling: float = 75.0
    promoter_bonus: float = 2.0
    low_debt_to_equity: float = 0.5
    low_debt_bonus: float = 2.0
    pat_margin_floor: float = 10.0
    pat_margin_bonus: float = 1.0

    # Red flags
    pe_premium_limit: float = 0.30
    max_ofs_ratio: float = 0.30
    high_debt_to_equity: float = 1.0
    min_revenue_growth: float = 5.0
    max_promoter_dilution: float = 30.0

    # Pros
    strong_growth: float = 20.0
    strong_roe: float = 18.0
    pe_discount: float = 0.8

    # Red flag count above which risk is aggressive; zero flags is conservative
    moderate_max_flags: int = 3


DEFAULT_POLICY = ScoringPolicy()


class ScoringEngine:
    """Stateless scorer bound to one policy."""

    def __init__(self, policy: ScoringPolicy = DEFAULT_POLICY):
        self.policy = policy

    def score(self, record: MergedIpoRecord) -> ScoreResult:
        fundamentals = self.fundamentals_score(record)
        valuation = self.valuation_score(record)
        governance = self.governance_score(record)
        p = self.policy
        overall = (
            fundamentals * p.fundamentals_weight
            + valuation * p.valuation_weight
            + governance * p.governance_weight
        )
        red_flags = self.red_flags(record)
        return ScoreResult(
            fundamentals_score=fundamentals,
            valuation_score=valuation,
            governance_score=governance,
            overall_score=self._bounded(overall),
            risk_level=self.risk_level(len(red_flags)),
            red_flags=tuple(red_flags),
            pros=tuple(self.pros(record)),
        )

    def score_all(self, records: Iterable[MergedIpoRecord]) -> list[MergedIpoRecord]:
        """Return copies of the records carrying their scores."""
        return [record.with_scores(self.score(record)) for record in records]

    # ------------------------------------------------------------------
    # Sub-scores
    # ------------------------------------------------------------------

    def fundamentals_score(self, record: MergedIpoRecord) -> float:
        p = self.policy
        score = p.base_score
        if record.revenue_growth is not None:
            score += min(record.revenue_growth / p.growth_divisor, p.growth_cap)
        if record.roe is not None:
            score += min(record.roe / p.roe_divisor, p.roe_cap)
        if record.roce is not None:
            score += min(record.roce / p.roce_divisor, p.roce_cap)
        return self._bounded(score)

    def valuation_score(self, record: MergedIpoRecord) -> float:
        """Lower P/E relative to the sector and lower P/B never score lower."""
        p = self.policy
        score = p.base_score
        pe_premium = self._pe_premium(record)
        if pe_premium is not None:
            score += clamp(-pe_premium * p.pe_sensitivity, p.band_low, p.band_high)
        if record.pb_ratio is not None:
            score += clamp(p.pb_anchor - record.pb_ratio / p.pb_divisor, p.band_low, p.band_high)
        return self._bounded(score)

    def governance_score(self, record: MergedIpoRecord) -> float:
        p = self.policy
        score = p.base_score
        if record.promoter_holding is not None and record.promoter_holding < p.promoter_holding_ceiling:
            score += p.promoter_bonus
        if record.debt_to_equity is not None and record.debt_to_equity < p.low_debt_to_equity:
            score += p.low_debt_bonus
        if record.pat_margin is not None and record.pat_margin > p.pat_margin_floor:
            score += p.pat_margin_bonus
        return self._bounded(score)

    # ------------------------------------------------------------------
    # Findings
    # ------------------------------------------------------------------

    def red_flags(self, record: MergedIpoRecord) -> list[str]:
        p = self.policy
        flags = []
        pe_premium = self._pe_premium(record)
        if pe_premium is not None and pe_premium > p.pe_premium_limit:
            flags.append(f"P/E ratio {pe_premium * 100:.0f}% above sector median")
        if record.ofs_ratio is not None and record.ofs_ratio > p.max_ofs_ratio:
            flags.append(f"High offer-for-sale component ({record.ofs_ratio * 100:.0f}% of issue)")
        if record.debt_to_equity is not None and record.debt_to_equity > p.high_debt_to_equity:
            flags.append(f"High debt-to-equity ratio ({record.debt_to_equity:.2f})")
        if record.revenue_growth is not None and record.revenue_growth < p.min_revenue_growth:
            flags.append(f"Weak revenue growth ({record.revenue_growth:.1f}%)")
        if record.gmp is not None and record.gmp < 0:
            flags.append(f"Negative grey market premium (₹{record.gmp:g})")
        dilution = self._promoter_dilution(record)
        if dilution is not None and dilution > p.max_promoter_dilution:
            flags.append(f"Promoter holding drops {dilution:.1f} points after the issue")
        return flags

    def pros(self, record: MergedIpoRecord) -> list[str]:
        p = self.policy
        pros = []
        if record.revenue_growth is not None and record.revenue_growth > p.strong_growth:
            pros.append(f"Strong revenue growth ({record.revenue_growth:.1f}%)")
        if record.roe is not None and record.roe > p.strong_roe:
            pros.append(f"High return on equity ({record.roe:.1f}%)")
        if record.debt_to_equity is not None and record.debt_to_equity < p.low_debt_to_equity:
            pros.append(f"Low debt-to-equity ratio ({record.debt_to_equity:.2f})")
        if record.gmp is not None and record.gmp > 0:
            pros.append(f"Positive grey market premium (₹{record.gmp:g})")
        if (
            record.pe_ratio is not None
            and record.sector_pe_median
            and record.pe_ratio < record.sector_pe_median * p.pe_discount
        ):
            pros.append("P/E ratio at a discount to sector median")
        return pros

    def risk_level(self, flag_count: int) -> RiskLevel:
        if flag_count == 0:
            return RiskLevel.CONSERVATIVE
        if flag_count <= self.policy.moderate_max_flags:
            return RiskLevel.MODERATE
        return RiskLevel.AGGRESSIVE

    # ------------------------------------------------------------------

    @staticmethod
    def _pe_premium(record: MergedIpoRecord) -> float | None:
        if record.pe_ratio is None or not record.sector_pe_median or record.sector_pe_median <= 0:
            return None
        return (record.pe_ratio - record.sector_pe_median) / record.sector_pe_median

    @staticmethod
    def _promoter_dilution(record: MergedIpoRecord) -> float | None:
        if record.promoter_holding is None or record.post_ipo_promoter_holding is None:
            return None
        return record.promoter_holding - record.post_ipo_promoter_holding

    def _bounded(self, value: float) -> float:
        return round(clamp(value, self.policy.min_score, self.policy.max_score), 2)


def score(record: MergedIpoRecord, policy: ScoringPolicy = DEFAULT_POLICY) -> ScoreResult:
    """Score one merged record under ``policy``."""
    return ScoringEngine(policy).score(record)
