"""
Faddl Match — FastAPI Application Entry Point

- Async lifespan: builds the service container and runs the maintenance
  scheduler (daily budget reset, cache upkeep)
- CORS, timeout, and structured-logging middleware
- AI-integration errors rendered as redacted JSON payloads
- Liveness endpoint
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from faddl_match.api.router import router as api_router
from faddl_match.config import Settings, get_settings
from faddl_match.container import ServiceContainer
from faddl_match.database import dispose_engine
from faddl_match.errors import (
    AIIntegrationError,
    BudgetExceededError,
    CircuitOpenError,
    ErrorCategory,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("faddl_match")


def configure_logging(settings: Settings) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.LOG_LEVEL.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Middleware classes
# ---------------------------------------------------------------------------

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Abort requests that exceed a configurable wall-clock timeout."""

    def __init__(self, app, timeout_seconds: float = 70.0) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={"detail": "Request timed out"},
            )


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------

def _status_for(error: AIIntegrationError) -> int:
    if isinstance(error, (CircuitOpenError, BudgetExceededError)):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if error.category is ErrorCategory.VALIDATION_ERROR:
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    return status.HTTP_502_BAD_GATEWAY


async def ai_integration_error_handler(request: Request, exc: AIIntegrationError) -> JSONResponse:
    logger.warning(
        "ai_integration_error",
        path=request.url.path,
        code=exc.code,
        category=exc.category.value,
    )
    return JSONResponse(status_code=_status_for(exc), content=exc.to_response())


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    When *container* is given it is used as-is (tests); otherwise one is
    built from *settings* during startup.
    """
    settings = settings or (container.settings if container else get_settings())
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "startup_begin",
            environment=settings.ENVIRONMENT,
            log_level=settings.LOG_LEVEL,
        )
        services = container or ServiceContainer.build(settings)
        app.state.container = services
        services.scheduler.start()
        logger.info("startup_complete")

        yield

        logger.info("shutdown_begin")
        await services.aclose()
        await dispose_engine()
        logger.info("shutdown_complete")

    app = FastAPI(
        title="Faddl Match",
        description="Profile-compatibility engine for matrimonial matching",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    # -- Middleware (applied in reverse order — last added runs first) ------ #
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AIIntegrationError, ai_integration_error_handler)

    @app.get("/health", tags=["health"])
    async def health_liveness() -> dict:
        """Liveness probe: healthy whenever the process is running."""
        return {"status": "healthy"}

    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()
