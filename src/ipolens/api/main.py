"""Main FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ipolens.api.config import get_api_settings
from ipolens.api.dependencies import get_orchestrator
from ipolens.api.middleware import add_cors_middleware, add_trace_middleware
from ipolens.api.routers import admin, ipos
from ipolens.api.schemas import ErrorResponse
from ipolens.core.errors import IpoLensError
from ipolens.utils.logger import get_logger

logger = get_logger(__name__)

ERROR_STATUS_CODES = {
    "VALIDATION_ERROR": 422,
    "SYNC_IN_PROGRESS": 409,
    "SOURCE_FETCH_ERROR": 502,
    "SOURCE_PARSE_ERROR": 502,
    "ANALYSIS_PROVIDER_ERROR": 502,
    "PERSISTENCE_ERROR": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("api_starting")
    yield
    logger.info("api_stopping")
    if get_orchestrator.cache_info().currsize:
        await get_orchestrator().aggregator.aclose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application
    """
    settings = get_api_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        IPO Lens API provides access to:

        - **IPOs**: Merged, scored IPO records from every configured source
        - **Analysis**: Narrative analysis of a single IPO
        - **Admin**: Sync trigger and per-source health

        ## Authentication

        Admin endpoints take `Authorization: Bearer <IPOLENS_ADMIN_TOKEN>` when a
        token is configured.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Add middleware
    add_cors_middleware(app)
    add_trace_middleware(app)

    # Add routers with API prefix
    app.include_router(ipos.router, prefix=settings.api_prefix)
    app.include_router(admin.router, prefix=settings.api_prefix)

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "docs": "/docs",
            "redoc": "/redoc",
            "openapi": "/openapi.json",
        }

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "ipolens-api",
            "version": settings.api_version,
        }

    @app.exception_handler(IpoLensError)
    async def ipolens_exception_handler(request: Request, exc: IpoLensError):
        """Render domain errors as structured JSON."""
        status_code = ERROR_STATUS_CODES.get(exc.code, 500)
        logger.warning("api_domain_error", code=exc.code, error=exc.message, path=request.url.path)
        body = ErrorResponse(
            error=exc.code,
            detail=exc.message,
            retryable=exc.retryable,
            recovery_hint=exc.recovery_hint,
        )
        return JSONResponse(status_code=status_code, content=body.model_dump())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        logger.exception("api_unhandled_error", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc),
            },
        )

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_api_settings()

    uvicorn.run(
        "ipolens.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )
