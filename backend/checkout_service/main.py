"""Course Checkout Backend: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

# configure_structlog MUST run before the other app imports
# (structlog caches the processor chain on first use).
from checkout_service.core.logging import configure_structlog
from checkout_service.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from checkout_service.api.routes import api_router
from checkout_service.core.config import Settings, get_settings
from checkout_service.core.locking import KeyedMutex
from checkout_service.core.rate_limit import RateLimiter, SqlRateLimitStore
from checkout_service.db import close_db, get_session_factory, init_db
from checkout_service.integrations.email import ResendClient
from checkout_service.middleware.correlation import (
    setup_correlation_middleware,
    get_correlation_id,
)
from checkout_service.services.webhook_handler import WebhookEventHandler
from checkout_service.services.webhook_ledger import FileWebhookLedger, SqlWebhookLedger

logger = structlog.get_logger(__name__)


async def init_services(app: FastAPI, settings: Settings) -> None:
    """Pick storage backends and attach the rate limiter and webhook handler to app.state.

    With a database: SQL ledger + SQL rate-limit store (memory fallback).
    Without: file ledger + memory-only rate limits.
    """
    if settings.has_database:
        await init_db(settings.database_url)
        factory = get_session_factory()
        ledger = SqlWebhookLedger(factory)
        rate_limiter = RateLimiter(durable=SqlRateLimitStore(factory))
        logger.info("storage_selected", backend="database")
    else:
        ledger = FileWebhookLedger(Path(settings.webhook_ledger_path), KeyedMutex())
        rate_limiter = RateLimiter()
        logger.info("storage_selected", backend="file", ledger_path=settings.webhook_ledger_path)

    app.state.rate_limiter = rate_limiter
    app.state.webhook_handler = WebhookEventHandler(
        ledger=ledger,
        email_sender=ResendClient(
            api_key=settings.resend_api_key,
            sender=settings.email_from,
            reply_to=settings.support_email or None,
        ),
        site_url=settings.site_url,
        support_email=settings.support_email,
        timeout_seconds=settings.confirmation_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # SIGTERM flips this so the health check returns 503 while draining
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    if not settings.stripe_webhook_secret:
        logger.warning("stripe_webhook_secret_missing")

    await init_services(app, settings)

    yield

    logger.info("shutdown_begin")
    await close_db()
    logger.info("shutdown_complete")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking.

    Logs errors server-side with full context, returns sanitized response to client.
    """
    debug_id = str(uuid.uuid4())
    corr_id = get_correlation_id()

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=corr_id,
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
        headers=exc.headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    Stripe treats the 500 as a signal to redeliver the webhook.
    """
    debug_id = str(uuid.uuid4())
    corr_id = get_correlation_id()

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=corr_id,
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Course checkout: Stripe sessions, webhooks and confirmation emails",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.site_url, "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "checkout_service.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
