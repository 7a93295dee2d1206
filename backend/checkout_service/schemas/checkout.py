"""Pydantic schemas and product catalog for checkout and webhook routes."""

from typing import Literal

from pydantic import BaseModel

# self-paced: all modules unlocked at once; live: modules released on a schedule
CourseProduct = Literal["self-paced", "live"]

DEFAULT_PRODUCT: CourseProduct = "live"

PRICE_LOOKUP_KEYS: dict[str, str] = {
    "live": "pw_live_eur",
    "self-paced": "pw_selfpaced_eur",
}


class CheckoutRequest(BaseModel):
    success_url: str
    cancel_url: str
    product_type: CourseProduct | None = None


class CheckoutResponse(BaseModel):
    url: str


class WebhookAck(BaseModel):
    status: str = "ok"
    duplicate: bool = False
