"""IPO read endpoints.

Reads are served from storage only, so a degraded or fully failed scrape
never turns into an error here: clients get the best-known rows with their
confidence and ``last_updated``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ipolens.analysis import IpoAnalyzer
from ipolens.api.dependencies import get_analyzer, get_pagination_params, get_repository
from ipolens.api.schemas import IpoListResponse
from ipolens.core.interfaces import IpoRepository
from ipolens.models import AnalysisResult, IpoStatus, StoredIpo

router = APIRouter(prefix="/ipos", tags=["IPOs"])


def _stored_or_404(repository: IpoRepository, symbol: str) -> StoredIpo:
    record = repository.find_by_symbol(symbol)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"IPO not found: {symbol.upper()}",
        )
    return record


@router.get("", response_model=IpoListResponse)
async def list_ipos(
    ipo_status: Optional[IpoStatus] = Query(None, alias="status", description="Lifecycle status filter"),
    min_score: Optional[float] = Query(None, ge=0, le=10, description="Minimum overall score"),
    pagination: dict = Depends(get_pagination_params),
    repository: IpoRepository = Depends(get_repository),
) -> IpoListResponse:
    """List stored IPOs, best scored first.

    Args:
        ipo_status: Optional status filter
        min_score: Optional minimum overall score
        pagination: Pagination parameters
        repository: IPO repository

    Returns:
        One page of stored IPOs

    Example:
        GET /api/v1/ipos?status=open&min_score=6
    """
    # One extra row tells whether another page exists
    rows = repository.list_ipos(
        status=ipo_status,
        min_score=min_score,
        limit=pagination["limit"] + 1,
        offset=pagination["offset"],
    )
    page = rows[: pagination["limit"]]
    return IpoListResponse(
        data=page,
        count=len(page),
        page=pagination["page"],
        page_size=pagination["page_size"],
        has_more=len(rows) > pagination["limit"],
    )


@router.get("/{symbol}", response_model=StoredIpo)
async def get_ipo(
    symbol: str,
    repository: IpoRepository = Depends(get_repository),
) -> StoredIpo:
    """Get one stored IPO by symbol (case-insensitive).

    Example:
        GET /api/v1/ipos/ABCLTD
    """
    return _stored_or_404(repository, symbol)


@router.post("/{symbol}/analysis", response_model=AnalysisResult)
async def analyze_ipo(
    symbol: str,
    repository: IpoRepository = Depends(get_repository),
    analyzer: IpoAnalyzer = Depends(get_analyzer),
) -> AnalysisResult:
    """Generate a narrative analysis for one stored IPO.

    Answers with the fallback analysis when no AI provider is configured or
    the provider fails.

    Example:
        POST /api/v1/ipos/ABCLTD/analysis
    """
    record = _stored_or_404(repository, symbol)
    return await analyzer.analyze(record)
