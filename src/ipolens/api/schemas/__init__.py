"""Pydantic schemas for API request/response models."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from ipolens.models import SourceOutcome, StoredIpo


class IpoListResponse(BaseModel):
    """Paginated list of stored IPOs."""

    data: list[StoredIpo]
    count: int
    page: int
    page_size: int
    has_more: bool = False


class SourcesResponse(BaseModel):
    """Per-source health, with an optional live connectivity check."""

    sources: dict[str, dict[str, Any]]
    connectivity: Optional[list[SourceOutcome]] = None
    sync_running: bool = False


class ErrorResponse(BaseModel):
    """Structured error body for IpoLensError failures."""

    error: str = Field(..., description="Machine-readable error code")
    detail: str
    retryable: bool = False
    recovery_hint: Optional[str] = None
