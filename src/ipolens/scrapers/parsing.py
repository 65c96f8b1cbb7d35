"""Normalization utilities for noisy provider text.

Every parser here is total: unparseable input yields ``None`` (or the
documented default), never an exception.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime

from ipolens.models import IpoStatus

# Words that vary between providers for the same issuer
NOISE_WORDS = frozenset(
    {
        "co",
        "company",
        "corp",
        "corporation",
        "inc",
        "india",
        "industries",
        "infra",
        "ipo",
        "limited",
        "ltd",
        "private",
        "pvt",
        "services",
        "sme",
        "solutions",
        "tech",
        "technologies",
        "technology",
    }
)

MISSING_MARKERS = frozenset({"", "-", "--", "na", "n/a", "nil", "tba", "tbd", "none", "null"})

_NON_ALNUM = re.compile(r"[^0-9a-z]+")
_NUMBER = re.compile(r"([+-])?\s*(?:₹|rs\.?|inr)?\s*(\d[\d,]*(?:\.\d+)?|\.\d+)", re.IGNORECASE)
_BARE_NUMBER = re.compile(r"\d[\d,]*(?:\.\d+)?")
_PAREN_PERCENT = re.compile(r"\(\s*([+-]?\s*\d+(?:\.\d+)?)\s*%\s*\)")
_PERCENT = re.compile(r"([+-]?\s*\d+(?:\.\d+)?)\s*%")
_WEEKDAY_PREFIX = re.compile(r"^(mon|tue|wed|thu|fri|sat|sun)[a-z]*,?\s+", re.IGNORECASE)
_ISO_PREFIX = re.compile(r"(\d{4})-(\d{2})-(\d{2})")

_DATE_FORMATS = (
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%d-%b-%Y",
    "%d-%B-%Y",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%Y-%m-%d",
)


def is_missing(text: object) -> bool:
    return text is None or clean_text(text).lower() in MISSING_MARKERS


def clean_text(text: object) -> str:
    """Collapse whitespace (including non-breaking spaces) and trim."""
    if text is None:
        return ""
    return " ".join(str(text).replace("\xa0", " ").split())


def name_fingerprint(name: str | None) -> str:
    """Case-folded alphanumerics of a name, with no words removed."""
    return _NON_ALNUM.sub("", (name or "").lower().replace("&", "and"))


def normalize_symbol(name: str | None, max_length: int = 20) -> str:
    """Derive the canonical join key from a company name or raw symbol.

    Names that differ only by case, punctuation or common corporate suffixes
    map to the same key::

        >>> normalize_symbol("ABC Technologies Ltd.")
        'ABC'
        >>> normalize_symbol("abc technologies limited")
        'ABC'

    The leading word is always kept, so ``"India Shelter Finance"`` keeps
    ``INDIA``. Distinct issuers can still collide; the aggregator flags
    those for review.
    """
    text = (name or "").lower().replace("&", " and ")
    tokens = [token for token in _NON_ALNUM.split(text) if token]
    if not tokens:
        return ""
    kept = [tokens[0]] + [token for token in tokens[1:] if token not in NOISE_WORDS]
    return "".join(kept).upper()[:max_length]


def parse_number(text: object) -> float | None:
    """Extract the first number from free text.

    Handles an optional sign, a currency glyph, thousands separators and a
    trailing multiplier or percent marker: ``"+₹1,250.50"``, ``"3.22x"``,
    ``"26.3%"``.
    """
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return float(text)
    if is_missing(text):
        return None
    match = _NUMBER.search(str(text))
    if not match:
        return None
    sign, digits = match.groups()
    try:
        value = float(digits.replace(",", ""))
    except ValueError:
        return None
    return -value if sign == "-" else value


def parse_int(text: object) -> int | None:
    value = parse_number(text)
    return int(value) if value is not None else None


def parse_price_range(text: object) -> tuple[float | None, float | None]:
    """Parse ``"₹95 to ₹100"`` or ``"1,045-1,100"`` into ``(min, max)``."""
    if is_missing(text):
        return None, None
    values = [float(v.replace(",", "")) for v in _BARE_NUMBER.findall(str(text))]
    if not values:
        return None, None
    return min(values), max(values)


def parse_issue_size(text: object) -> float | None:
    """Parse an issue size into crores (``"₹125 Cr"`` -> 125, ``"850 Lakh"`` -> 8.5)."""
    value = parse_number(text)
    if value is None:
        return None
    lowered = str(text).lower()
    if "lakh" in lowered or "lac" in lowered:
        return round(value / 100, 4)
    return value


@dataclass(frozen=True)
class GmpQuote:
    """Result of parsing a GMP cell.

    ``gmp`` defaults to 0 when nothing parses; ``matched`` tells callers
    whether the value was actually reported.
    """

    gmp: float = 0.0
    gmp_percent: float | None = None
    matched: bool = False


def parse_gmp(text: object) -> GmpQuote:
    """Parse ``"+₹125 (26.3%)"`` into ``GmpQuote(125.0, 26.3, True)``."""
    if is_missing(text):
        return GmpQuote()
    text = str(text)

    percent_match = _PAREN_PERCENT.search(text) or _PERCENT.search(text)
    gmp_percent = None
    remainder = text
    if percent_match:
        gmp_percent = float(percent_match.group(1).replace(" ", ""))
        remainder = text[: percent_match.start()] + text[percent_match.end():]

    gmp = parse_number(remainder)
    if gmp is None:
        return GmpQuote(gmp_percent=gmp_percent)
    return GmpQuote(gmp=gmp, gmp_percent=gmp_percent, matched=True)


def parse_date(text: object) -> date | None:
    """Parse the date spellings used across providers.

    Accepts ``"10 Jun 2025"``, ``"Tue, Jun 10, 2025"``, ``"10-Jun-2025"``,
    ``"10/06/2025"`` and ISO strings with or without a time part. Returns
    None for placeholders such as ``"TBA"``.
    """
    if is_missing(text):
        return None
    cleaned = _WEEKDAY_PREFIX.sub("", clean_text(text))
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    iso = _ISO_PREFIX.search(cleaned)
    if iso:
        try:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
        except ValueError:
            return None
    return None


def parse_status(text: object) -> IpoStatus | None:
    """Map provider status vocabulary onto ``IpoStatus``."""
    lowered = clean_text(text).lower()
    if not lowered:
        return None
    if "list" in lowered:
        return IpoStatus.LISTED
    if "upcoming" in lowered or "forthcoming" in lowered:
        return IpoStatus.UPCOMING
    if "close" in lowered:
        return IpoStatus.CLOSED
    if "open" in lowered or "live" in lowered or "active" in lowered or "current" in lowered:
        return IpoStatus.OPEN
    return None


def infer_status(
    open_date: date | None,
    close_date: date | None,
    listing_date: date | None = None,
    today: date | None = None,
) -> IpoStatus | None:
    """Infer the IPO phase from its dates; None when no date is known."""
    today = today or date.today()
    if listing_date and today >= listing_date:
        return IpoStatus.LISTED
    if open_date is None and close_date is None:
        return None
    if open_date and today < open_date:
        return IpoStatus.UPCOMING
    if close_date and today > close_date:
        return IpoStatus.CLOSED
    return IpoStatus.OPEN
