import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from checkout_service.core.config import get_settings

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for load balancer.

    Returns 503 during graceful shutdown so the balancer stops routing traffic.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "checkout-backend"},
        )
    return {"status": "healthy", "service": "checkout-backend"}


@router.get("/ready")
async def readiness_check():
    """Readiness check - verifies the database when one is configured."""
    checks: dict[str, bool | str] = {"database": "not_configured"}

    if get_settings().has_database:
        checks["database"] = False
        try:
            from checkout_service.db.base import get_session_factory

            async with get_session_factory()() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = True
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))

    all_healthy = checks["database"] is not False
    status_code = 200 if all_healthy else 503

    return JSONResponse(
        status_code=status_code,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
