"""NSE exchange scraper: current and upcoming issues (no GMP)."""

from __future__ import annotations

from typing import Any

from ipolens.models import DataKind, IpoData, IpoStatus, SubscriptionData
from ipolens.scrapers.nse_client import NseApiScraper
from ipolens.scrapers.parsing import (
    clean_text,
    parse_date,
    parse_issue_size,
    parse_number,
    parse_price_range,
)

LISTS = {
    "current": "/api/ipo-current-issue",
    "upcoming": "/api/ipo-upcoming",
}
LIST_STATUS = {"current": IpoStatus.OPEN, "upcoming": IpoStatus.UPCOMING}


class NseScraper(NseApiScraper):
    source_id = "nse"
    capabilities = frozenset({DataKind.IPOS, DataKind.SUBSCRIPTIONS})

    def to_ipo(self, row: dict[str, Any], status: IpoStatus) -> IpoData:
        price_min, price_max = parse_price_range(row.get("issuePrice"))
        return IpoData(
            source=self.source_id,
            symbol=clean_text(row.get("symbol")).upper(),
            company_name=clean_text(row.get("companyName")),
            status=status,
            ipo_type="sme" if "sme" in str(row.get("series") or "").lower() else "mainboard",
            open_date=parse_date(row.get("issueStartDate")),
            close_date=parse_date(row.get("issueEndDate")),
            listing_date=parse_date(row.get("listingDate")),
            price_min=price_min,
            price_max=price_max,
            issue_size_crores=parse_issue_size(row.get("issueSizeAmount")),
        )

    async def fetch_ipos(self) -> list[IpoData]:
        lists = await self.fetch_lists(LISTS)
        return [
            self.to_ipo(row, LIST_STATUS[name])
            for name, rows in lists.items()
            for row in rows
            if row.get("companyName") or row.get("symbol")
        ]

    async def fetch_subscriptions(self) -> list[SubscriptionData]:
        rows = (await self.fetch_lists({"current": LISTS["current"]}))["current"]
        subscriptions = []
        for row in rows:
            total = parse_number(row.get("totalSubscription") or row.get("noOfTime"))
            if not total:
                continue
            subscriptions.append(
                SubscriptionData(
                    source=self.source_id,
                    symbol=clean_text(row.get("symbol")).upper(),
                    company_name=clean_text(row.get("companyName")),
                    qib=parse_number(row.get("qibSubscription")),
                    nii=parse_number(row.get("niiSubscription")),
                    retail=parse_number(row.get("retailSubscription")),
                    total=total,
                )
            )
        return subscriptions
