"""Request-scoped helpers shared by the routes: client IP, services, rate limiting."""

import structlog
from fastapi import HTTPException, Request

from checkout_service.core.config import get_settings
from checkout_service.core.rate_limit import RateLimiter, RateLimitResult, retry_after_seconds
from checkout_service.services.webhook_handler import WebhookEventHandler

logger = structlog.get_logger(__name__)

_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def get_client_ip(request: Request) -> str:
    """Client IP from proxy headers (first x-forwarded-for hop), else the socket peer."""
    for header in _IP_HEADERS:
        value = request.headers.get(header)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_webhook_handler(request: Request) -> WebhookEventHandler:
    return request.app.state.webhook_handler


async def enforce_rate_limit(request: Request, purpose: str, limit: int) -> RateLimitResult:
    """Count the request against "<purpose>:<client ip>"; raise 429 when over the limit."""
    settings = get_settings()
    ip = get_client_ip(request)
    result = await get_rate_limiter(request).check(f"{purpose}:{ip}", limit, settings.rate_limit_window_ms)

    if not result.admitted:
        retry_after = retry_after_seconds(result)
        logger.warning("rate_limit_exceeded", purpose=purpose, client_ip=ip, retry_after=retry_after)
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded",
            headers={"Retry-After": str(retry_after)},
        )
    return result
