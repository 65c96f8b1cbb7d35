"""API dependencies for dependency injection."""

import secrets
from collections.abc import AsyncIterator
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ipolens.analysis import IpoAnalyzer, build_provider
from ipolens.api.config import APISettings, get_api_settings
from ipolens.core.interfaces import IpoRepository
from ipolens.orchestration import SyncOrchestrator, build_sync_orchestrator
from ipolens.storage import SqlIpoRepository

security = HTTPBearer(auto_error=False)


@lru_cache(maxsize=1)
def get_repository() -> IpoRepository:
    """Get the process-wide IPO repository.

    Returns:
        SqlIpoRepository bound to the configured database
    """
    return SqlIpoRepository()


@lru_cache(maxsize=1)
def get_orchestrator() -> SyncOrchestrator:
    """Get the process-wide sync orchestrator.

    One instance per process, so a second admin sync request while one is
    running is rejected rather than run alongside it.
    """
    return build_sync_orchestrator(repository=get_repository())


async def get_analyzer() -> AsyncIterator[IpoAnalyzer]:
    """Yield an analyzer for one request and close its provider client after."""
    analyzer = IpoAnalyzer(build_provider())
    try:
        yield analyzer
    finally:
        await analyzer.aclose()


def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: APISettings = Depends(get_api_settings),
) -> None:
    """Check the admin bearer token.

    Args:
        credentials: HTTP authorization credentials
        settings: API settings

    Raises:
        HTTPException: If a token is configured and the request does not carry it
    """
    if settings.admin_token is None:
        return
    supplied = credentials.credentials if credentials else ""
    if not secrets.compare_digest(supplied.encode(), settings.admin_token.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_pagination_params(
    page: int = 1,
    page_size: int | None = None,
    settings: APISettings = Depends(get_api_settings),
) -> dict[str, int]:
    """Get pagination parameters.

    Args:
        page: Page number (1-indexed)
        page_size: Number of items per page
        settings: API settings

    Returns:
        Dictionary with pagination parameters

    Raises:
        HTTPException: If parameters are invalid
    """
    if page_size is None:
        page_size = settings.default_page_size

    if page < 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Page number must be >= 1",
        )

    if page_size < 1 or page_size > settings.max_page_size:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Page size must be between 1 and {settings.max_page_size}",
        )

    offset = (page - 1) * page_size
    return {"page": page, "page_size": page_size, "limit": page_size, "offset": offset}
