"""API-specific test fixtures."""

import hashlib
import hmac
import json
import time

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from checkout_service.core.config import get_settings
from checkout_service.core.locking import KeyedMutex
from checkout_service.core.rate_limit import RateLimiter
from checkout_service.services.webhook_handler import WebhookEventHandler
from checkout_service.services.webhook_ledger import FileWebhookLedger

WEBHOOK_SECRET = "whsec_test_secret"
SITE_URL = "https://kurs.example.com"


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header value for ``payload``."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def post_event(client: TestClient, event: dict, headers: dict | None = None):
    """POST a signed event to the webhook endpoint."""
    payload = json.dumps(event).encode("utf-8")
    return client.post(
        "/api/webhooks/stripe",
        content=payload,
        headers={"stripe-signature": sign_payload(payload), **(headers or {})},
    )


@pytest.fixture
def api_env(monkeypatch):
    """Environment for a Stripe-configured deployment without a database."""
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("SITE_URL", SITE_URL)
    for name in ("DEBUG", "DEV_CHECKOUT", "ALLOWED_REDIRECT_ORIGINS"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()


@pytest.fixture
def ledger(tmp_path):
    return FileWebhookLedger(tmp_path / "logs" / "webhook-events.json", KeyedMutex())


@pytest.fixture
def api_app(api_env, ledger, email_sender) -> FastAPI:
    """App wired like production minus the lifespan (no SIGTERM hook, no Resend)."""
    from checkout_service.api.routes import api_router
    from checkout_service.main import generic_exception_handler, http_exception_handler
    from checkout_service.middleware.correlation import setup_correlation_middleware

    app = FastAPI(title="Course Checkout - Test Client")

    setup_correlation_middleware(app)

    # Exception handlers (needed for debug_id testing)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    app.state.rate_limiter = RateLimiter()
    app.state.webhook_handler = WebhookEventHandler(
        ledger=ledger,
        email_sender=email_sender,
        site_url=SITE_URL,
        support_email="hilfe@example.com",
    )
    return app


@pytest.fixture
def api_client(api_app) -> TestClient:
    # Unhandled errors come back as the 500 JSON response instead of raising
    return TestClient(api_app, raise_server_exceptions=False)
