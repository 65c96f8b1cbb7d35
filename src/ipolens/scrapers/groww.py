"""Groww IPO API scraper (listings and subscription; no GMP)."""

from __future__ import annotations

from typing import Any

import httpx

from ipolens.core.config import ScraperConfig, get_config
from ipolens.core.errors import SourceParseError
from ipolens.models import DataKind, IpoData, IpoStatus, SubscriptionData
from ipolens.scrapers.base import JSON_ACCEPT, BaseScraper
from ipolens.scrapers.parsing import clean_text, infer_status, parse_date, parse_int, parse_number

# Response buckets and the status implied by each
BUCKETS = {
    "openIpos": IpoStatus.OPEN,
    "upcomingIpos": IpoStatus.UPCOMING,
    "closedIpos": IpoStatus.CLOSED,
}

RUPEES_PER_CRORE = 10_000_000


class GrowwScraper(BaseScraper):
    source_id = "groww"
    capabilities = frozenset({DataKind.IPOS, DataKind.SUBSCRIPTIONS})
    accept = JSON_ACCEPT

    def __init__(
        self,
        api_url: str | None = None,
        config: ScraperConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config=config, client=client)
        self.api_url = api_url or get_config().sources.groww_api_url

    async def _load(self) -> dict[str, Any]:
        payload = await self.fetch_json(self.api_url)
        if not isinstance(payload, dict) or not any(key in payload for key in BUCKETS):
            raise SourceParseError(self.source_id, "no IPO buckets in response")
        return payload

    async def buckets(self) -> list[tuple[IpoStatus, dict[str, Any]]]:
        payload = await self.cached("ipos", self._load)
        return [
            (status, item)
            for key, status in BUCKETS.items()
            for item in payload.get(key) or []
            if isinstance(item, dict) and clean_text(item.get("companyName"))
        ]

    async def fetch_ipos(self) -> list[IpoData]:
        ipos = []
        for bucket_status, item in await self.buckets():
            price = item.get("issuePrice") or {}
            open_date = parse_date(item.get("bidStartDate"))
            close_date = parse_date(item.get("bidEndDate"))
            listing_date = parse_date(item.get("listingDate"))

            status = bucket_status
            if str(item.get("ipoStatus") or "").upper() == "LISTED":
                status = IpoStatus.LISTED
            elif bucket_status == IpoStatus.CLOSED:
                status = infer_status(open_date, close_date, listing_date) or bucket_status

            issue_size = parse_number(item.get("totalIssueSize"))
            ipos.append(
                IpoData(
                    source=self.source_id,
                    symbol=clean_text(item.get("symbol")),
                    company_name=clean_text(item.get("companyName")),
                    status=status,
                    ipo_type="sme" if str(item.get("ipoType") or "").lower() == "sme" else "mainboard",
                    open_date=open_date,
                    close_date=close_date,
                    listing_date=listing_date,
                    price_min=parse_number(price.get("minIssuePrice")) or None,
                    price_max=parse_number(price.get("maxIssuePrice")) or None,
                    lot_size=parse_int(item.get("lotSize")) or None,
                    issue_size_crores=round(issue_size / RUPEES_PER_CRORE, 2) if issue_size else None,
                )
            )
        return ipos

    async def fetch_subscriptions(self) -> list[SubscriptionData]:
        subscriptions = []
        for status, item in await self.buckets():
            if status == IpoStatus.UPCOMING:
                continue
            details = item.get("subscriptionDetails") or {}
            total = parse_number(details.get("totalSubscription"))
            if not total:
                continue
            subscriptions.append(
                SubscriptionData(
                    source=self.source_id,
                    symbol=clean_text(item.get("symbol")),
                    company_name=clean_text(item.get("companyName")),
                    qib=parse_number(details.get("qibSubscription")) or None,
                    nii=parse_number(details.get("niiSubscription")) or None,
                    retail=parse_number(details.get("retailSubscription")) or None,
                    employee=parse_number(details.get("employeeSubscription")) or None,
                    total=total,
                )
            )
        return subscriptions
