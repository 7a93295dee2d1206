"""Stripe integration: event verification, price lookup and checkout sessions."""

import json

import stripe
import structlog

from checkout_service.core.config import get_settings
from checkout_service.core.exceptions import CheckoutSessionError, PriceNotConfiguredError
from checkout_service.schemas.checkout import DEFAULT_PRODUCT, PRICE_LOOKUP_KEYS, CourseProduct
from checkout_service.services.webhook_handler import VerifiedEvent

logger = structlog.get_logger(__name__)


def _get_stripe() -> None:
    """Configure the stripe module with the secret key."""
    settings = get_settings()
    stripe.api_key = settings.stripe_secret_key


def construct_event(payload: bytes, sig_header: str, secret: str) -> VerifiedEvent:
    """Verify the Stripe signature and return the event.

    Raises ValueError for an unparsable payload and
    stripe.SignatureVerificationError for a bad signature.
    The event body is decoded as plain dicts, not StripeObjects.
    """
    text = payload.decode("utf-8")
    stripe.WebhookSignature.verify_header(text, sig_header, secret, stripe.Webhook.DEFAULT_TOLERANCE)
    event = json.loads(text)
    try:
        event_id, event_type, data = event["id"], event["type"], event["data"]["object"]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed Stripe event: {e}") from e

    # Ledgers key on the id verbatim; a non-string id would not match itself after a JSON round trip
    if not isinstance(event_id, str) or not isinstance(event_type, str) or not isinstance(data, dict):
        raise ValueError("Malformed Stripe event")
    return VerifiedEvent(id=event_id, type=event_type, data=data)


def _configured_price_id(product: CourseProduct) -> str:
    settings = get_settings()
    if product == "self-paced":
        return settings.stripe_price_id_self_eur
    return settings.stripe_price_id_live_eur


async def get_course_price_id(product: CourseProduct = DEFAULT_PRODUCT) -> str:
    """Resolve the Stripe price for a product by lookup key, then by configured id."""
    _get_stripe()
    lookup_key = PRICE_LOOKUP_KEYS[product]

    prices = await stripe.Price.list_async(lookup_keys=[lookup_key], active=True, limit=1)
    if prices.data:
        return prices.data[0].id

    price_id = _configured_price_id(product)
    if price_id:
        logger.info("price_lookup_fallback", product=product, lookup_key=lookup_key)
        return price_id

    raise PriceNotConfiguredError(product, lookup_key)


async def create_checkout(
    success_url: str,
    cancel_url: str,
    product: CourseProduct = DEFAULT_PRODUCT,
) -> str:
    """Create a one-off payment Checkout Session and return its redirect URL."""
    price_id = await get_course_price_id(product)

    checkout_session = await stripe.checkout.Session.create_async(
        mode="payment",
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=success_url,
        cancel_url=cancel_url,
        allow_promotion_codes=False,
        metadata={"productType": product},
        customer_creation="always",
        payment_intent_data={"setup_future_usage": "on_session"},
    )

    if not checkout_session.url:
        raise CheckoutSessionError("Failed to create checkout session URL")

    logger.info("checkout_session_created", session_id=checkout_session.id, product=product)
    return checkout_session.url
