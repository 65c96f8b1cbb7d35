"""Base class for IPO data sources.

Subclasses declare which data kinds they support and implement the matching
``fetch_*`` coroutines, which may raise freely. The public ``get_*``
operations wrap them so that every failure ends up in a ``ScraperResult``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, ClassVar, TypeVar

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ipolens.core.config import ScraperConfig, get_config
from ipolens.core.errors import SourceFetchError, SourceParseError
from ipolens.core.interfaces import SourceScraper
from ipolens.models import (
    KIND_MODELS,
    DataKind,
    GmpData,
    IpoData,
    ScraperResult,
    SourceOutcome,
    SubscriptionData,
)
from ipolens.utils.logger import get_logger
from ipolens.utils.metrics import (
    last_successful_scrape,
    scraper_duration,
    scraper_records,
    scraper_requests,
)

T = TypeVar("T")

BROWSER_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
JSON_ACCEPT = "application/json, text/plain, */*"


def is_retryable(error: BaseException) -> bool:
    """Retry transport errors, throttling and server errors; never 4xx."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return isinstance(error, httpx.TransportError)


class BaseScraper(SourceScraper):
    """Shared HTTP plumbing and result wrapping for all sources.

    Attributes:
        source_id: Stable identifier used in priorities and ``sources`` sets
        capabilities: Data kinds this source can supply
        accept: Default Accept header for this source
    """

    source_id: ClassVar[str] = ""
    capabilities: ClassVar[frozenset[DataKind]] = frozenset()
    accept: ClassVar[str] = BROWSER_ACCEPT

    def __init__(
        self,
        config: ScraperConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or get_config().scraper
        self._client = client
        self._owns_client = client is None
        self._cache: dict[str, tuple[float, Any]] = {}
        self._cache_locks: dict[str, asyncio.Lock] = {}
        self.logger = get_logger(f"{__name__}.{self.source_id}")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                follow_redirects=True,
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept": self.accept,
                    "Accept-Language": "en-US,en;q=0.9",
                },
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def fetch(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """GET with retries, raising ``SourceFetchError`` on final failure."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_attempts + 1),
            wait=wait_exponential(multiplier=self.config.retry_delay_seconds, max=10),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self.client.get(url, params=params, headers=headers)
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise SourceFetchError(
                self.source_id, f"HTTP {status} from {url}", status_code=status
            ) from e
        except httpx.HTTPError as e:
            raise SourceFetchError(self.source_id, f"{type(e).__name__} for {url}: {e}") from e
        return response

    async def fetch_text(self, url: str, **kwargs: Any) -> str:
        response = await self.fetch(url, **kwargs)
        return response.text

    async def fetch_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.fetch(url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise SourceParseError(self.source_id, f"Invalid JSON from {url}") from e

    async def cached(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        """Share one fetch between operations issued close together.

        Concurrent callers for the same key wait for a single load.
        """
        lock = self._cache_locks.setdefault(key, asyncio.Lock())
        async with lock:
            entry = self._cache.get(key)
            if entry and time.monotonic() - entry[0] < self.config.listing_cache_seconds:
                return entry[1]
            value = await loader()
            self._cache[key] = (time.monotonic(), value)
            return value

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def get_ipos(self) -> ScraperResult[IpoData]:
        return await self._collect(DataKind.IPOS, self.fetch_ipos)

    async def get_subscriptions(self) -> ScraperResult[SubscriptionData]:
        return await self._collect(DataKind.SUBSCRIPTIONS, self.fetch_subscriptions)

    async def get_gmp(self) -> ScraperResult[GmpData]:
        return await self._collect(DataKind.GMP, self.fetch_gmp)

    async def test_connection(self) -> SourceOutcome:
        """Fetch the IPO listing once and report reachability."""
        result = await self.get_ipos()
        return SourceOutcome(
            source=self.source_id,
            kind=DataKind.IPOS,
            success=result.success,
            count=len(result.data),
            response_time_ms=result.response_time_ms,
            error=result.error,
        )

    async def fetch_ipos(self) -> list[IpoData]:
        raise NotImplementedError

    async def fetch_subscriptions(self) -> list[SubscriptionData]:
        raise NotImplementedError

    async def fetch_gmp(self) -> list[GmpData]:
        raise NotImplementedError

    async def _collect(
        self,
        kind: DataKind,
        producer: Callable[[], Awaitable[list[Any]]],
    ) -> ScraperResult:
        result_type = ScraperResult[KIND_MODELS[kind]]
        if kind not in self.capabilities:
            scraper_requests.labels(source=self.source_id, operation=kind.value, status="unsupported").inc()
            return result_type(source=self.source_id, kind=kind, success=True, supported=False)

        started = time.perf_counter()
        try:
            records = await producer()
        except (SourceFetchError, SourceParseError) as e:
            return self._failure(result_type, kind, started, e.message)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            return self._failure(result_type, kind, started, f"parse error: {type(e).__name__}: {e}")
        except Exception as e:
            self.logger.exception("source_unexpected_error", operation=kind.value)
            return self._failure(result_type, kind, started, f"unexpected error: {e}")

        elapsed = (time.perf_counter() - started) * 1000
        scraper_requests.labels(source=self.source_id, operation=kind.value, status="success").inc()
        scraper_duration.labels(source=self.source_id, operation=kind.value).observe(elapsed / 1000)
        scraper_records.labels(source=self.source_id, operation=kind.value).inc(len(records))
        last_successful_scrape.labels(source=self.source_id).set_to_current_time()
        self.logger.info(
            "source_fetch_completed",
            operation=kind.value,
            records=len(records),
            response_time_ms=round(elapsed, 1),
        )
        return result_type(
            source=self.source_id,
            kind=kind,
            success=True,
            data=records,
            response_time_ms=elapsed,
        )

    def _failure(self, result_type: type, kind: DataKind, started: float, error: str) -> ScraperResult:
        elapsed = (time.perf_counter() - started) * 1000
        scraper_requests.labels(source=self.source_id, operation=kind.value, status="failure").inc()
        scraper_duration.labels(source=self.source_id, operation=kind.value).observe(elapsed / 1000)
        self.logger.warning("source_fetch_failed", operation=kind.value, error=error)
        return result_type(
            source=self.source_id,
            kind=kind,
            success=False,
            response_time_ms=elapsed,
            error=error,
        )
