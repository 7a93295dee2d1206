"""Checkout route: creates a Stripe Checkout Session for a course product."""

import time
from urllib.parse import urlencode, urlsplit

import structlog
from fastapi import APIRouter, HTTPException, Request

from checkout_service.api.deps import enforce_rate_limit
from checkout_service.core.config import get_settings
from checkout_service.integrations.stripe_client import create_checkout
from checkout_service.schemas.checkout import DEFAULT_PRODUCT, CheckoutRequest, CheckoutResponse

logger = structlog.get_logger(__name__)

router = APIRouter()

DEV_ORIGINS = frozenset({
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3001",
})


# ── Helpers ─────────────────────────────────────────────────────────


def normalize_origin(value: str | None) -> str | None:
    """Return scheme://host[:port] for a URL or bare domain, None if unparsable."""
    if not value:
        return None
    url = value if value.startswith("http") else f"https://{value}"
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    origin = f"{parts.scheme}://{parts.hostname}"
    return f"{origin}:{port}" if port else origin


def is_allowed_redirect(url: str) -> bool:
    """Accept only redirects back to our own site, local dev origins or *.local.test."""
    origin = normalize_origin(url) if url.startswith("http") else None
    if origin is None:
        return False

    settings = get_settings()
    allowed = {
        normalize_origin(settings.site_url),
        *(normalize_origin(o) for o in settings.allowed_redirect_origins),
    }
    allowed.discard(None)

    hostname = urlsplit(url).hostname or ""
    is_local_test = url.startswith("http://") and hostname.endswith(".local.test")

    return origin in allowed or origin in DEV_ORIGINS or is_local_test


# ── Endpoints ───────────────────────────────────────────────────────


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout_session(body: CheckoutRequest, request: Request):
    """Create a Stripe Checkout session and return the redirect URL."""
    settings = get_settings()
    await enforce_rate_limit(request, "checkout", settings.checkout_rate_limit)

    if not is_allowed_redirect(body.success_url) or not is_allowed_redirect(body.cancel_url):
        raise HTTPException(status_code=400, detail="Redirect URLs not allowed")

    product = body.product_type or DEFAULT_PRODUCT

    # Fake sessions only in debug deployments with the explicit flag set
    if settings.debug and settings.dev_checkout:
        fake_session_id = f"dev_{int(time.time() * 1000)}"
        query = urlencode({"session_id": fake_session_id, "product": product})
        logger.info("dev_checkout_session", session_id=fake_session_id, product=product)
        return CheckoutResponse(url=f"{body.success_url}?{query}")

    url = await create_checkout(
        success_url=body.success_url,
        cancel_url=body.cancel_url,
        product=product,
    )
    return CheckoutResponse(url=url)
