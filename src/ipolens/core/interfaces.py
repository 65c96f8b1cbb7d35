"""Abstract interfaces defining contracts between layers.

This module establishes the seams that enable:
- Swapping providers, storage engines and AI vendors
- Test doubles for every external collaborator
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ipolens.models import (
        GmpData,
        IpoData,
        IpoStatus,
        MergedIpoRecord,
        ScraperResult,
        StoredIpo,
        SubscriptionData,
    )


class SourceScraper(ABC):
    """Contract for one IPO data provider.

    Each operation returns a ``ScraperResult`` and never raises. A source that
    cannot supply a data kind returns an empty successful result flagged
    ``supported=False``.

    Implementations:
        - ChittorgarhScraper (HTML tables)
        - InvestorGainScraper, GrowwScraper (JSON APIs)
        - NseScraper, NseToolsScraper (exchange APIs behind a cookie session)
    """

    source_id: str

    @abstractmethod
    async def get_ipos(self) -> ScraperResult[IpoData]:
        """Fetch and parse IPO listings."""

    @abstractmethod
    async def get_subscriptions(self) -> ScraperResult[SubscriptionData]:
        """Fetch and parse subscription multiples."""

    @abstractmethod
    async def get_gmp(self) -> ScraperResult[GmpData]:
        """Fetch and parse grey market premiums."""

    async def aclose(self) -> None:
        """Release network resources."""


class IpoRepository(ABC):
    """Persistence collaborator used by the sync orchestrator and the API.

    Writes issued inside ``transaction()`` are applied together or not at all.
    """

    @abstractmethod
    def find_by_symbol(self, symbol: str) -> StoredIpo | None:
        """Find one IPO by canonical symbol."""

    @abstractmethod
    def upsert(self, record: MergedIpoRecord, fields: Iterable[str] | None = None) -> StoredIpo:
        """Create the IPO or update it.

        Args:
            record: Merged and scored record
            fields: When given, only these fields are written on update
        """

    @abstractmethod
    def mark_archived(self, symbol: str) -> bool:
        """Transition an active IPO to listed without deleting it.

        Returns:
            True if a row changed state
        """

    @abstractmethod
    def list_ipos(
        self,
        status: IpoStatus | None = None,
        min_score: float | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[StoredIpo]:
        """List persisted IPOs, best scored first."""

    @abstractmethod
    def active_symbols(self) -> set[str]:
        """Symbols of IPOs currently upcoming or open."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[IpoRepository]:
        """Group writes into one atomic unit."""


class AnalysisProvider(ABC):
    """Strategy interface over one LLM vendor."""

    name: str

    @abstractmethod
    async def generate(self, prompt: str, system_prompt: str) -> str:
        """Return the model's text reply.

        Raises:
            AnalysisProviderError: On transport or vendor errors
        """

    async def aclose(self) -> None:
        """Release network resources."""

