"""API middleware."""

from collections.abc import Callable

from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from ipolens.api.config import get_api_settings
from ipolens.utils.logger import get_logger, trace_context

logger = get_logger(__name__)

TRACE_HEADER = "X-Trace-Id"


def add_cors_middleware(app) -> None:
    """Add CORS middleware to the application.

    Args:
        app: FastAPI application instance
    """
    settings = get_api_settings()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


class TraceMiddleware(BaseHTTPMiddleware):
    """Run each request under its own trace id and echo it in a header."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        with trace_context("api", method=request.method, path=request.url.path) as trace_id:
            response = await call_next(request)
            logger.info("api_request", status_code=response.status_code)
        response.headers[TRACE_HEADER] = trace_id
        return response


def add_trace_middleware(app) -> None:
    """Add per-request trace ids to the application."""
    app.add_middleware(TraceMiddleware)
