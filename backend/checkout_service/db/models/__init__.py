"""Re-export all models so Base.metadata sees them."""

from checkout_service.db.models.rate_limit import RateLimitBucket
from checkout_service.db.models.webhook_event import WebhookEvent

__all__ = [
    "RateLimitBucket",
    "WebhookEvent",
]
