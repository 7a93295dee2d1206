"""Stripe webhook endpoint: rate limited, signature checked, processed exactly once."""

import stripe
import structlog
from fastapi import APIRouter, HTTPException, Request

from checkout_service.api.deps import enforce_rate_limit, get_webhook_handler
from checkout_service.core.config import get_settings
from checkout_service.integrations.stripe_client import construct_event
from checkout_service.schemas.checkout import WebhookAck
from checkout_service.services.webhook_handler import WebhookOutcome

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(request: Request):
    """Handle Stripe webhook events with signature verification.

    Duplicates and ignored event types answer 200 so Stripe stops retrying.
    Processing failures surface as 500 so Stripe redelivers.
    """
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        logger.error("stripe_webhook_secret_missing")
        raise HTTPException(status_code=503, detail="Stripe webhook endpoint is not configured")

    await enforce_rate_limit(request, "stripe-webhook", settings.webhook_rate_limit)

    body = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    try:
        event = construct_event(body, sig_header, settings.stripe_webhook_secret)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        logger.warning("stripe_signature_invalid")
        raise HTTPException(status_code=400, detail="Invalid signature")

    outcome = await get_webhook_handler(request).handle(event)

    return WebhookAck(duplicate=outcome is WebhookOutcome.DUPLICATE)
