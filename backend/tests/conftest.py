"""Shared test fixtures for all test groups."""

import asyncio

import pytest

from checkout_service.core.config import get_settings
from checkout_service.core.exceptions import EmailDeliveryError
from checkout_service.integrations.email import EmailMessage


class RecordingEmailSender:
    """EmailSender double: records every message, optionally slow or failing."""

    def __init__(self, delay: float = 0.0, fail_with: Exception | None = None):
        self.delay = delay
        self.fail_with = fail_with
        self.attempts: list[EmailMessage] = []
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> str:
        self.attempts.append(message)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(message)
        return f"msg_{len(self.sent)}"


def make_checkout_event(
    event_id: str,
    email: str | None = "a@example.com",
    payment_status: str = "paid",
    session_id: str = "cs_test_123",
    event_type: str = "checkout.session.completed",
) -> dict:
    """Build a minimal Stripe-style checkout event dict."""
    session = {
        "id": session_id,
        "object": "checkout.session",
        "payment_status": payment_status,
        "customer_details": {"email": email} if email else None,
    }
    return {"id": event_id, "type": event_type, "data": {"object": session}}


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    """Keep each test's environment out of the cached Settings."""
    for name in ("DATABASE_URL", "POSTGRES_URL"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def email_sender():
    """EmailSender that succeeds immediately."""
    return RecordingEmailSender()


@pytest.fixture
def failing_email_sender():
    """EmailSender that always raises EmailDeliveryError."""
    return RecordingEmailSender(fail_with=EmailDeliveryError("provider unavailable", status_code=503))
