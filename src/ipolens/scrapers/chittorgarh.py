"""Chittorgarh HTML scraper.

Chittorgarh publishes IPO calendars, live subscription and grey market
reports as plain HTML tables. Column order shifts between reports, so the
listing parser classifies cells by content rather than position.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterator

import httpx
from bs4 import BeautifulSoup

from ipolens.core.config import ScraperConfig, get_config
from ipolens.core.errors import SourceParseError
from ipolens.models import DataKind, GmpData, IpoData, SubscriptionData
from ipolens.scrapers.base import BaseScraper
from ipolens.scrapers.parsing import (
    clean_text,
    infer_status,
    parse_date,
    parse_gmp,
    parse_issue_size,
    parse_number,
    parse_price_range,
)

LISTING_PATHS = {
    "current": ("/ipo/ipo_list.asp", "mainboard"),
    "mainboard": ("/report/mainboard-ipo-list-in-india-702/", "mainboard"),
    "sme": ("/report/sme-ipo-list-in-india/702/", "sme"),
}
SUBSCRIPTION_PATH = "/report/ipo-subscription-status-live-mainboard-sme/21/"
GMP_PATH = "/report/ipo-grey-market-premium-latest-grey-market-premium-702/"

# Minimum populated <td> cells per report row
MIN_CELLS = {DataKind.IPOS: 4, DataKind.SUBSCRIPTIONS: 5, DataKind.GMP: 3}
# First-cell texts of header rows
HEADER_NAMES = frozenset({"company", "company name", "ipo", "ipo name", "issuer", "issuer company", "issuer name"})

_DATE_CELL = re.compile(r"\d{1,2}\s*[a-z]{3,}\s*,?\s*\d{4}|[a-z]{3,}\s+\d{1,2},?\s+\d{4}", re.IGNORECASE)
_PRICE_CELL = re.compile(r"\d+\s*to\s*\d+|\d+\s*-\s*\d+")
_LOT_CELL = re.compile(r"^\d{1,3}(?:,\d{3})+$|^\d+$")


def iter_rows(html: str, min_cells: int) -> Iterator[list[str]]:
    """Yield cleaned cell texts of data rows from every table on the page.

    Header rows, rows with too few cells and rows whose name cell is
    implausibly short are skipped.
    """
    soup = BeautifulSoup(html, "lxml")
    for table in soup.find_all("table"):
        for row in table.find_all("tr"):
            cells = [clean_text(td.get_text(" ")) for td in row.find_all("td")]
            if len(cells) < min_cells:
                continue
            name = cells[0]
            if len(name) < 3 or name.lower() in HEADER_NAMES:
                continue
            yield cells


def completeness(ipo: IpoData) -> int:
    return sum(value is not None for value in (ipo.open_date, ipo.price_min, ipo.lot_size))


class ChittorgarhScraper(BaseScraper):
    """IPO calendar, subscription and GMP reports from chittorgarh.com."""

    source_id = "chittorgarh"
    capabilities = frozenset({DataKind.IPOS, DataKind.SUBSCRIPTIONS, DataKind.GMP})

    def __init__(
        self,
        base_url: str | None = None,
        config: ScraperConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config=config, client=client)
        self.base_url = (base_url or get_config().sources.chittorgarh_base_url).rstrip("/")

    async def fetch_ipos(self) -> list[IpoData]:
        pages = list(LISTING_PATHS.values())
        responses = await asyncio.gather(
            *(self.fetch_text(self.base_url + path) for path, _ in pages),
            return_exceptions=True,
        )

        by_name: dict[str, IpoData] = {}
        failures: list[BaseException] = []
        for (path, ipo_type), response in zip(pages, responses):
            if isinstance(response, BaseException):
                self.logger.warning("listing_page_failed", path=path, error=str(response))
                failures.append(response)
                continue
            for ipo in self.parse_ipo_table(response, ipo_type):
                key = ipo.company_name.lower()
                current = by_name.get(key)
                if current is None or completeness(ipo) > completeness(current):
                    by_name[key] = ipo

        if len(failures) == len(pages):
            raise failures[0]
        return list(by_name.values())

    def parse_ipo_table(self, html: str, ipo_type: str) -> list[IpoData]:
        ipos = []
        for cells in iter_rows(html, MIN_CELLS[DataKind.IPOS]):
            dates = []
            price_text = issue_text = None
            lot_size = None
            for text in cells[1:]:
                if _DATE_CELL.search(text):
                    parsed = parse_date(text)
                    if parsed:
                        dates.append(parsed)
                    continue
                lowered = text.lower()
                if "₹" in text or _PRICE_CELL.search(text):
                    if "cr" in lowered or "lakh" in lowered:
                        issue_text = text
                    else:
                        price_text = text
                elif "cr" in lowered or "crore" in lowered:
                    issue_text = text
                elif lot_size is None and _LOT_CELL.match(text):
                    lot_size = int(text.replace(",", ""))

            open_date = dates[0] if dates else None
            close_date = dates[1] if len(dates) > 1 else None
            price_min, price_max = parse_price_range(price_text)
            ipos.append(
                IpoData(
                    source=self.source_id,
                    company_name=cells[0],
                    open_date=open_date,
                    close_date=close_date,
                    price_min=price_min,
                    price_max=price_max,
                    lot_size=lot_size,
                    issue_size_crores=parse_issue_size(issue_text),
                    ipo_type=ipo_type,
                    status=infer_status(open_date, close_date),
                )
            )
        return ipos

    async def fetch_subscriptions(self) -> list[SubscriptionData]:
        html = await self.fetch_text(self.base_url + SUBSCRIPTION_PATH)
        subscriptions = [
            SubscriptionData(
                source=self.source_id,
                company_name=cells[0],
                qib=parse_number(cells[1]),
                nii=parse_number(cells[2]),
                retail=parse_number(cells[3]),
                total=parse_number(cells[4]),
            )
            for cells in iter_rows(html, MIN_CELLS[DataKind.SUBSCRIPTIONS])
        ]
        if not subscriptions and "<table" not in html.lower():
            raise SourceParseError(self.source_id, "subscription report has no tables")
        return subscriptions

    async def fetch_gmp(self) -> list[GmpData]:
        html = await self.fetch_text(self.base_url + GMP_PATH)
        quotes = []
        for cells in iter_rows(html, MIN_CELLS[DataKind.GMP]):
            quote = parse_gmp(cells[1])
            quotes.append(
                GmpData(
                    source=self.source_id,
                    company_name=cells[0],
                    gmp=quote.gmp if quote.matched else None,
                    gmp_percent=quote.gmp_percent,
                    expected_listing=parse_number(cells[2]),
                )
            )
        if not quotes and "<table" not in html.lower():
            raise SourceParseError(self.source_id, "GMP report has no tables")
        return quotes
