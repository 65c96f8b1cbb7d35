"""NSE calendar adapter (the nsetools-style endpoints).

Reads the IPO calendar and the live active-issues feed. Rows from both feeds
are deduplicated by symbol, the active feed winning.
"""

from __future__ import annotations

from typing import Any

from ipolens.models import DataKind, IpoData, SubscriptionData
from ipolens.scrapers.nse_client import NseApiScraper
from ipolens.scrapers.parsing import (
    clean_text,
    infer_status,
    parse_date,
    parse_issue_size,
    parse_number,
    parse_status,
)

LISTS = {
    "active": "/market-data/live-active-upcoming-issues-ipo",
    "calendar": "/api/ipo-calendar",
}


def issue_size_crores(value: Any) -> float | None:
    """Numbers are already in crores; strings carry their own unit."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return parse_issue_size(value)


class NseToolsScraper(NseApiScraper):
    source_id = "nsetools"
    capabilities = frozenset({DataKind.IPOS, DataKind.SUBSCRIPTIONS})
    referer_path = "/market-data/live-active-upcoming-issues-ipo"

    async def rows(self) -> list[dict[str, Any]]:
        lists = await self.fetch_lists(LISTS)
        by_symbol: dict[str, dict[str, Any]] = {}
        for name in LISTS:
            for row in lists.get(name, []):
                key = clean_text(row.get("symbol")).upper() or clean_text(
                    row.get("companyName") or row.get("name")
                ).lower()
                if key:
                    by_symbol.setdefault(key, row)
        return list(by_symbol.values())

    def to_ipo(self, row: dict[str, Any]) -> IpoData:
        open_date = parse_date(row.get("biddingStartDate"))
        close_date = parse_date(row.get("biddingEndDate"))
        listing_date = parse_date(row.get("listingDate"))
        return IpoData(
            source=self.source_id,
            symbol=clean_text(row.get("symbol")).upper(),
            company_name=clean_text(row.get("companyName") or row.get("name")),
            status=parse_status(row.get("status")) or infer_status(open_date, close_date, listing_date),
            open_date=open_date,
            close_date=close_date,
            listing_date=listing_date,
            price_min=parse_number(row.get("priceMin")),
            price_max=parse_number(row.get("priceMax")),
            issue_size_crores=issue_size_crores(row.get("issueSize")),
        )

    async def fetch_ipos(self) -> list[IpoData]:
        return [self.to_ipo(row) for row in await self.rows()]

    async def fetch_subscriptions(self) -> list[SubscriptionData]:
        subscriptions = []
        for row in await self.rows():
            total = parse_number(row.get("subscribed"))
            if not total:
                continue
            subscriptions.append(
                SubscriptionData(
                    source=self.source_id,
                    symbol=clean_text(row.get("symbol")).upper(),
                    company_name=clean_text(row.get("companyName") or row.get("name")),
                    total=total,
                )
            )
        return subscriptions
