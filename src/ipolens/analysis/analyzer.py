"""Narrative IPO analysis on top of a merged, scored record.

``IpoAnalyzer.analyze`` never raises: without a provider, or on any provider
failure, it returns a deterministic fallback ``AnalysisResult``.
"""

from __future__ import annotations

import re

from ipolens.core.errors import IpoLensError
from ipolens.core.interfaces import AnalysisProvider
from ipolens.models import AnalysisResult, MergedIpoRecord
from ipolens.utils.logger import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an expert IPO analyst for the Indian stock market (NSE/BSE).\n"
    "Analyze IPOs objectively based on fundamentals, valuation, and governance metrics.\n"
    "Provide balanced, factual analysis. This is for screening purposes only, not investment advice.\n"
    "Always include a disclaimer that users should consult SEBI-registered advisors.\n"
    "Keep responses concise but informative."
)

NO_PROVIDER_SUMMARY = (
    "AI analysis requires an API key. Set AI_PROVIDER and AI_API_KEY to enable this feature."
)
NO_PROVIDER_RECOMMENDATION = "Unable to generate recommendation without API key."
UNAVAILABLE_SUMMARY = "AI analysis currently unavailable. Please check your API key configuration."
UNAVAILABLE_RECOMMENDATION = "Unable to generate recommendation."

MAX_TEXT = 500
MAX_INSIGHTS = 5

_LIST_MARKER = re.compile(r"^[\d.\-*#\s]+")
_SECTIONS = (
    (("summary", "overview"), "summary"),
    (("risk", "concern"), "insight"),
    (("opportunit", "positive"), "insight"),
    (("assessment", "recommendation"), "recommendation"),
)


def build_prompt(record: MergedIpoRecord) -> str:
    """User prompt listing the record's identity, metrics and findings."""
    metrics = []
    for label, value in (
        ("Fundamentals Score", record.fundamentals_score),
        ("Valuation Score", record.valuation_score),
        ("Governance Score", record.governance_score),
        ("Overall Score", record.overall_score),
    ):
        if value is not None:
            metrics.append(f"{label}: {value:.1f}/10")
    if record.risk_level:
        metrics.append(f"Risk Level: {record.risk_level.value}")
    for label, value, suffix in (
        ("P/E Ratio", record.pe_ratio, ""),
        ("Sector P/E Median", record.sector_pe_median, ""),
        ("ROE", record.roe, "%"),
        ("ROCE", record.roce, "%"),
        ("Revenue Growth", record.revenue_growth, "%"),
        ("D/E Ratio", record.debt_to_equity, ""),
        ("Promoter Holding", record.promoter_holding, "%"),
        ("Subscription", record.subscription_total, "x"),
    ):
        if value is not None:
            metrics.append(f"{label}: {value:g}{suffix}")
    if record.ofs_ratio is not None:
        metrics.append(f"OFS Ratio: {record.ofs_ratio * 100:.1f}%")
    if record.gmp is not None:
        metrics.append(f"Grey Market Premium: ₹{record.gmp:g}")

    if record.price_min is not None and record.price_max is not None:
        price_range = f"₹{record.price_min:g} - ₹{record.price_max:g}"
    else:
        price_range = "N/A"
    issue_size = f"₹{record.issue_size_crores:g} Cr" if record.issue_size_crores is not None else "N/A"

    lines = [
        "Analyze this IPO for Indian market investors:",
        "",
        f"Company: {record.company_name}",
        f"Symbol: {record.symbol}",
        f"Sector: {record.sector or 'Unknown'}",
        f"Price Range: {price_range}",
        f"Issue Size: {issue_size}",
        f"Status: {record.status.value if record.status else 'unknown'}",
        "",
        "Metrics:",
        *metrics,
    ]
    if record.red_flags:
        lines.append(f"Red Flags: {', '.join(record.red_flags)}")
    if record.pros:
        lines.append(f"Positives: {', '.join(record.pros)}")
    lines += [
        "",
        "Provide:",
        "1. A brief 2-3 sentence summary of the IPO",
        "2. Key risk factors and concerns",
        "3. Potential opportunities",
        "4. Overall assessment for different investor profiles (conservative/moderate/aggressive)",
        "",
        "Remember: This is for screening purposes only, not investment advice.",
    ]
    return "\n".join(lines)


def parse_response(content: str, record: MergedIpoRecord, provider: str | None = None) -> AnalysisResult:
    """Split a free-text reply into summary, insights and recommendation.

    Heading lines switch the current section; text before any heading can
    serve as the summary.
    """
    summary: list[str] = []
    recommendation: list[str] = []
    insights: list[str] = []
    section = ""

    for raw in content.splitlines():
        line = raw.strip()
        if not line:
            continue
        lowered = line.lower()
        heading = next((name for markers, name in _SECTIONS if any(m in lowered for m in markers)), None)
        if heading and len(line) < 60:
            section = heading
            continue

        text = _LIST_MARKER.sub("", line).strip(" *")
        if not text:
            continue
        if section == "summary":
            summary.append(text)
        elif section == "insight":
            if len(text) > 10:
                insights.append(text)
        elif section == "recommendation":
            recommendation.append(text)
        elif not summary and len(text) > 20:
            summary.append(text)

    risk = record.risk_level.value if record.risk_level else "moderate"
    summary_text = " ".join(summary) or (
        f"{record.company_name} is a {record.sector or 'company'} IPO with {risk} risk profile."
    )
    recommendation_text = " ".join(recommendation) or (
        f"Based on the computed scores, this IPO appears suitable for {risk} risk investors. "
        "Always conduct your own research."
    )
    return AnalysisResult(
        summary=summary_text[:MAX_TEXT],
        recommendation=recommendation_text[:MAX_TEXT],
        risk_assessment=risk,
        key_insights=insights[:MAX_INSIGHTS],
        provider=provider,
    )


def fallback_result(record: MergedIpoRecord, summary: str, recommendation: str) -> AnalysisResult:
    return AnalysisResult(
        summary=summary,
        recommendation=recommendation,
        risk_assessment=record.risk_level.value if record.risk_level else "unknown",
        fallback=True,
    )


class IpoAnalyzer:
    """Runs one provider over merged records, with a deterministic fallback."""

    def __init__(self, provider: AnalysisProvider | None = None):
        self.provider = provider

    async def analyze(self, record: MergedIpoRecord) -> AnalysisResult:
        if self.provider is None:
            return fallback_result(record, NO_PROVIDER_SUMMARY, NO_PROVIDER_RECOMMENDATION)

        try:
            content = await self.provider.generate(build_prompt(record), SYSTEM_PROMPT)
        except IpoLensError as e:
            logger.warning("analysis_failed", symbol=record.symbol, provider=self.provider.name, error=str(e))
            return fallback_result(record, UNAVAILABLE_SUMMARY, UNAVAILABLE_RECOMMENDATION)
        except Exception:
            logger.exception("analysis_unexpected_error", symbol=record.symbol, provider=self.provider.name)
            return fallback_result(record, UNAVAILABLE_SUMMARY, UNAVAILABLE_RECOMMENDATION)

        logger.info("analysis_completed", symbol=record.symbol, provider=self.provider.name)
        return parse_response(content, record, self.provider.name)

    async def aclose(self) -> None:
        if self.provider is not None:
            await self.provider.aclose()
