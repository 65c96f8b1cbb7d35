"""Administrative endpoints: sync trigger and source health."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ipolens.api.dependencies import get_orchestrator, require_admin
from ipolens.api.schemas import SourcesResponse
from ipolens.models import SyncStatus
from ipolens.orchestration import SyncOrchestrator

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])

SYNC_STATUS_CODES = {
    SyncStatus.COMPLETED: 200,
    SyncStatus.TOTAL_OUTAGE: 200,
    SyncStatus.REJECTED: 409,
    SyncStatus.FAILED: 503,
}


@router.post("/sync")
async def trigger_sync(
    clean: bool = Query(False, description="Archive active IPOs no source reports any more"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Run one sync and return its summary.

    A total outage is a completed request with ``success: false``; a sync
    already in progress answers 409.

    Example:
        POST /api/v1/admin/sync?clean=true
    """
    result = await orchestrator.sync(clean=clean)
    return JSONResponse(
        status_code=SYNC_STATUS_CODES[result.status],
        content=result.model_dump(mode="json"),
    )


@router.get("/sources", response_model=SourcesResponse)
async def source_health(
    check: bool = Query(False, description="Also run a live connectivity test"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SourcesResponse:
    """Per-source call statistics and circuit state.

    Example:
        GET /api/v1/admin/sources?check=true
    """
    aggregator = orchestrator.aggregator
    connectivity = await aggregator.test_connections() if check else None
    return SourcesResponse(
        sources=aggregator.source_stats(),
        connectivity=connectivity,
        sync_running=orchestrator.running,
    )
