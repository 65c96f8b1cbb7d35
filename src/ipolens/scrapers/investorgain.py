"""InvestorGain JSON API scraper.

The IPO report endpoint returns one row per IPO with GMP, price band and
dates. Subscription multiples need one extra request per IPO, so only the
first ``max_detail_requests`` IPOs get detailed figures; the rest fall back
to the headline multiple shown in the report.
"""

from __future__ import annotations

import asyncio
import re
import time
from datetime import date
from typing import Any

import httpx

from ipolens.core.config import ScraperConfig, SourcesConfig, get_config
from ipolens.core.errors import IpoLensError, SourceParseError, ValidationError
from ipolens.models import DataKind, GmpData, GmpPoint, IpoData, IpoStatus, SubscriptionData
from ipolens.scrapers.base import JSON_ACCEPT, BaseScraper
from ipolens.scrapers.parsing import (
    clean_text,
    infer_status,
    parse_date,
    parse_gmp,
    parse_int,
    parse_issue_size,
    parse_number,
    parse_price_range,
)

_TAGS = re.compile(r"<[^>]*>")
_IPO_SUFFIX = re.compile(r"\s+IPO$", re.IGNORECASE)

# Badge CSS classes on the report's Name column
BADGE_STATUS = (
    (("badge-success", "open"), IpoStatus.OPEN),
    (("badge-info", "upcoming"), IpoStatus.UPCOMING),
    (("badge-warning", "pending"), IpoStatus.CLOSED),
    (("badge-secondary", "listed"), IpoStatus.LISTED),
)


def fiscal_year(today: date) -> str:
    """Indian fiscal year label, e.g. ``2025-26`` for dates from April 2025."""
    start = today.year if today.month >= 4 else today.year - 1
    return f"{start}-{(start + 1) % 100:02d}"


def strip_tags(html: str | None) -> str:
    return _IPO_SUFFIX.sub("", clean_text(_TAGS.sub(" ", html or "")))


def status_from_badge(name_html: str | None) -> IpoStatus | None:
    lowered = (name_html or "").lower()
    for markers, status in BADGE_STATUS:
        if any(marker in lowered for marker in markers):
            return status
    return None


class InvestorGainScraper(BaseScraper):
    """IPO listings, GMP and subscription details from InvestorGain."""

    source_id = "investorgain"
    capabilities = frozenset({DataKind.IPOS, DataKind.SUBSCRIPTIONS, DataKind.GMP})
    accept = JSON_ACCEPT

    def __init__(
        self,
        sources: SourcesConfig | None = None,
        config: ScraperConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config=config, client=client)
        sources = sources or get_config().sources
        self.api_url = sources.investorgain_api_url.rstrip("/")
        self.report_path = sources.investorgain_report_path

    def report_url(self, today: date | None = None) -> str:
        today = today or date.today()
        path = self.report_path.format(
            month=today.month, year=today.year, fiscal_year=fiscal_year(today)
        )
        return self.api_url + path

    async def _load_report(self) -> list[dict[str, Any]]:
        payload = await self.fetch_json(
            self.report_url(), params={"search": "", "v": int(time.time() * 1000)}
        )
        rows = payload.get("reportTableData") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            raise SourceParseError(self.source_id, "reportTableData missing from IPO report")
        return rows

    async def report_rows(self) -> list[dict[str, Any]]:
        return await self.cached("report", self._load_report)

    def parse_row(self, row: dict[str, Any]) -> IpoData:
        name_html = row.get("Name") or ""
        company_name = strip_tags(row.get("~ipo_name") or name_html)
        open_date = parse_date(row.get("~Srt_Open"))
        close_date = parse_date(row.get("~Srt_Close"))
        listing_date = parse_date(row.get("~Str_Listing"))
        price_min, price_max = parse_price_range(row.get("Price (₹)"))
        category = str(row.get("~IPO_Category") or "").lower()
        return IpoData(
            source=self.source_id,
            company_name=company_name,
            external_id=str(row["~id"]) if row.get("~id") is not None else None,
            status=status_from_badge(name_html) or infer_status(open_date, close_date, listing_date),
            ipo_type="sme" if "sme" in category else "mainboard",
            open_date=open_date,
            close_date=close_date,
            allotment_date=parse_date(row.get("~Srt_BoA_Dt")),
            listing_date=listing_date,
            price_min=price_min,
            price_max=price_max,
            lot_size=parse_int(row.get("Lot")),
            issue_size_crores=parse_issue_size(row.get("IPO Size (₹ in cr)")),
            pe_ratio=parse_number(row.get("~P/E")),
        )

    async def fetch_ipos(self) -> list[IpoData]:
        return [self.parse_row(row) for row in await self.report_rows() if row.get("~ipo_name") or row.get("Name")]

    async def fetch_gmp(self) -> list[GmpData]:
        quotes = []
        for row in await self.report_rows():
            quote = parse_gmp(row.get("GMP"))
            if not quote.matched:
                continue
            ipo = self.parse_row(row)
            gmp_percent = parse_number(row.get("~gmp_percent_calc"))
            quotes.append(
                GmpData(
                    source=self.source_id,
                    company_name=ipo.company_name,
                    gmp=quote.gmp,
                    gmp_percent=gmp_percent if gmp_percent is not None else quote.gmp_percent,
                    expected_listing=ipo.price_max + quote.gmp if ipo.price_max is not None else None,
                )
            )
        return quotes

    async def fetch_subscriptions(self) -> list[SubscriptionData]:
        rows = await self.report_rows()
        ipos = [self.parse_row(row) for row in rows]
        detailed = [ipo for ipo in ipos if ipo.external_id][: self.config.max_detail_requests]

        details = await asyncio.gather(
            *(self.subscription_details(ipo.external_id) for ipo in detailed),
            return_exceptions=True,
        )
        by_name: dict[str, SubscriptionData] = {}
        for ipo, detail in zip(detailed, details):
            if isinstance(detail, IpoLensError):
                self.logger.warning("subscription_detail_failed", ipo_id=ipo.external_id, error=str(detail))
                continue
            if isinstance(detail, BaseException):
                raise detail
            if detail is not None:
                by_name[ipo.company_name] = detail.model_copy(update={"company_name": ipo.company_name})

        # Headline multiple for IPOs without detail
        for ipo, row in zip(ipos, rows):
            total = parse_number(row.get("Sub"))
            if ipo.company_name not in by_name and total is not None:
                by_name[ipo.company_name] = SubscriptionData(
                    source=self.source_id, company_name=ipo.company_name, total=total
                )
        return list(by_name.values())

    async def subscription_details(self, ipo_id: str) -> SubscriptionData | None:
        """Latest bidding-day multiples for one IPO, or None if not yet bidding."""
        payload = await self.fetch_json(f"{self.api_url}/ipo/ipo-subscription-read/{ipo_id}")
        if not isinstance(payload, dict):
            raise SourceParseError(self.source_id, f"unexpected subscription payload for IPO {ipo_id}")
        bidding = (payload.get("data") or {}).get("ipoBiddingData") or []
        if payload.get("msg") != 1 or not bidding:
            return None
        latest = bidding[-1]
        return SubscriptionData(
            source=self.source_id,
            qib=parse_number(latest.get("qib")),
            nii=parse_number(latest.get("nii")),
            retail=parse_number(latest.get("rii")),
            total=parse_number(latest.get("total")),
        )

    async def get_gmp_history(self, ipo_id: str) -> list[GmpPoint]:
        """Day-by-day GMP history for one IPO, oldest first.

        Raises:
            SourceFetchError: If the history endpoint is unreachable
            SourceParseError: If the payload is not a GMP history
            ValidationError: If ``ipo_id`` is not a numeric InvestorGain id
        """
        if not ipo_id.isdigit():
            raise ValidationError(
                f"Invalid InvestorGain IPO id: {ipo_id!r}",
                details={"ipo_id": ipo_id},
                recovery_hint="Use the numeric id from the InvestorGain IPO page URL",
            )
        payload = await self.fetch_json(f"{self.api_url}/ipo/ipo-gmp-read/{ipo_id}/true")
        if not isinstance(payload, dict) or payload.get("msg") != 1:
            raise SourceParseError(self.source_id, f"no GMP history for IPO {ipo_id}")

        points = []
        for item in payload.get("ipoGmpData") or []:
            as_of = parse_date(item.get("gmp_date"))
            gmp = parse_number(item.get("gmp"))
            if as_of is None or gmp is None:
                continue
            points.append(
                GmpPoint(
                    as_of=as_of,
                    gmp=gmp,
                    gmp_percent=parse_number(item.get("gmp_percent_calc")),
                    estimated_listing=parse_number(item.get("estimated_listing_price")),
                )
            )
        return sorted(points, key=lambda point: point.as_of)
