"""ordercore main application module.

This module initializes the FastAPI application and configures
core middleware, routers, and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ordercore.api import (
    cron_router,
    duplicates_router,
    health_router,
    orders_router,
    products_router,
    system_settings_router,
)
from ordercore.api.errors import status_code_for
from ordercore.api.middleware import setup_middleware
from ordercore.application.dispatcher import get_dispatcher
from ordercore.application.transition_engine import close_client_factory
from ordercore.domain.exceptions import DomainError
from ordercore.infrastructure.config import settings
from ordercore.infrastructure.database import dispose_engine
from ordercore.infrastructure.logging_config import configure_logging
from ordercore.infrastructure.meta_client import close_meta_client

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    configure_logging()
    logger.info(
        "Starting ordercore API",
        version=settings.api_version,
        debug=settings.debug,
        repository_backend=settings.repository_backend,
        helpship_environment=settings.helpship_environment,
    )

    yield

    logger.info("Shutting down ordercore API")

    # Let in-flight Helpship and Meta jobs finish before closing their clients
    dispatcher = get_dispatcher()
    if dispatcher.pending:
        logger.info("Waiting for background jobs", pending=dispatcher.pending)
    await dispatcher.drain()

    await close_client_factory()
    await close_meta_client()
    if settings.repository_backend == "sql":
        await dispose_engine()


app = FastAPI(
    title="ordercore API",
    description="Purchase order lifecycle with Helpship fulfillment sync",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup custom middleware (request ID, API key auth, error handling)
setup_middleware(app)

# Include routers; check-duplicates before the /orders/{order_id} routes
app.include_router(health_router, tags=["Health"])
app.include_router(duplicates_router)
app.include_router(orders_router)
app.include_router(products_router)
app.include_router(system_settings_router)
app.include_router(cron_router)


# ============================================================================
# Custom Exception Handlers
# ============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "ERROR")
        message = detail.get("message", str(detail))
        details = detail.get("details", {})
    else:
        error_code = "ERROR"
        message = str(detail)
        details = {}

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": details,
            "request_id": request_id,
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError):
    """Handle domain errors that escaped a route without conversion."""
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status_code_for(exc),
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
            "request_id": request_id,
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )

    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "An internal error occurred",
            "details": {},
            "request_id": request_id,
        },
    )
