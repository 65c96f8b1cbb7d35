"""NSE session handling shared by the exchange-backed scrapers.

NSE's JSON API rejects requests without the cookies set by its landing page,
so the session visits the home page first and again whenever it is older
than ``nse_session_refresh_seconds``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx

from ipolens.core.config import ScraperConfig, SourcesConfig, get_config
from ipolens.core.errors import SourceParseError
from ipolens.scrapers.base import JSON_ACCEPT, BaseScraper


class NseApiScraper(BaseScraper):
    """Base for scrapers that read NSE's ``/api`` endpoints."""

    accept = JSON_ACCEPT
    referer_path = "/market-data/all-upcoming-issues-ipo"

    def __init__(
        self,
        sources: SourcesConfig | None = None,
        config: ScraperConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config=config, client=client)
        sources = sources or get_config().sources
        self.base_url = sources.nse_base_url.rstrip("/")
        self.session_refresh_seconds = sources.nse_session_refresh_seconds
        self._session_started: float | None = None
        self._session_lock = asyncio.Lock()

    @property
    def api_headers(self) -> dict[str, str]:
        return {
            "Accept": JSON_ACCEPT,
            "Referer": self.base_url + self.referer_path,
            "Origin": self.base_url,
            "X-Requested-With": "XMLHttpRequest",
        }

    def session_is_stale(self) -> bool:
        return (
            self._session_started is None
            or time.monotonic() - self._session_started > self.session_refresh_seconds
        )

    async def establish_session(self) -> None:
        """Visit the landing page so NSE sets its cookies on the client."""
        async with self._session_lock:
            if not self.session_is_stale():
                return
            try:
                self.logger.info("establishing_nse_session")
                await self.client.get(self.base_url + "/", headers={"Accept": "text/html"})
            except httpx.HTTPError as e:
                # API calls may still work with cookies from an earlier visit
                self.logger.warning("nse_session_failed", error=str(e))
            self._session_started = time.monotonic()

    async def fetch_api(self, path: str) -> list[dict[str, Any]]:
        """GET an NSE API path and return its list of rows.

        NSE answers either with a bare list or with ``{"data": [...]}``.
        """
        await self.establish_session()
        payload = await self.fetch_json(self.base_url + path, headers=self.api_headers)
        if isinstance(payload, dict):
            payload = payload.get("data", payload.get("rows"))
        if not isinstance(payload, list):
            raise SourceParseError(self.source_id, f"expected a list of issues from {path}")
        return [row for row in payload if isinstance(row, dict)]

    async def fetch_lists(self, paths: dict[str, str]) -> dict[str, list[dict[str, Any]]]:
        """Fetch several API lists concurrently, tolerating partial failure.

        Raises the first error only when every list failed.
        """
        results = await asyncio.gather(
            *(self.cached(path, lambda path=path: self.fetch_api(path)) for path in paths.values()),
            return_exceptions=True,
        )
        lists: dict[str, list[dict[str, Any]]] = {}
        errors: list[BaseException] = []
        for name, result in zip(paths, results):
            if isinstance(result, BaseException):
                self.logger.warning("nse_list_failed", list=name, error=str(result))
                errors.append(result)
            else:
                lists[name] = result
        if errors and not lists:
            raise errors[0]
        return lists
