"""WebhookEventHandler: exactly-once confirmation emails for Stripe checkouts.

Flow per verified event:
1. Types outside HANDLED_TYPES are acknowledged without touching the ledger
2. ledger.reserve(event.id); a lost reservation is a duplicate delivery (no-op)
3. Unpaid sessions and sessions without an email are finalized without sending
4. Send the welcome email, then mark the event processed
5. If sending fails, times out or is cancelled, the reservation is released and the error
   re-raised, so the transport answers 5xx and Stripe redelivers later

If mark_processed fails after the email went out, the error propagates and a
redelivery may send a second email.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from checkout_service.emails.welcome import build_access_link, render_welcome_email
from checkout_service.integrations.email import EmailSender
from checkout_service.services.webhook_ledger import WebhookLedger

logger = structlog.get_logger(__name__)

HANDLED_TYPES = frozenset({
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
})


@dataclass(frozen=True)
class VerifiedEvent:
    """A provider event whose signature has already been checked."""

    id: str
    type: str
    data: Mapping[str, Any] = field(default_factory=dict)


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    SKIPPED = "skipped"


def _customer_email(session: Mapping[str, Any]) -> str | None:
    details = session.get("customer_details") or {}
    return details.get("email") or session.get("customer_email")


class WebhookEventHandler:
    def __init__(
        self,
        ledger: WebhookLedger,
        email_sender: EmailSender,
        site_url: str,
        support_email: str = "",
        timeout_seconds: float | None = None,
    ):
        self.ledger = ledger
        self.email_sender = email_sender
        self.site_url = site_url
        self.support_email = support_email
        self.timeout_seconds = timeout_seconds

    async def handle(self, event: VerifiedEvent) -> WebhookOutcome:
        log = logger.bind(event_id=event.id, event_type=event.type)

        if event.type not in HANDLED_TYPES:
            log.info("webhook_event_ignored")
            return WebhookOutcome.IGNORED

        if not await self.ledger.reserve(event.id):
            log.info("webhook_duplicate_ignored")
            return WebhookOutcome.DUPLICATE

        session = event.data
        session_id = session.get("id", "")
        email = _customer_email(session)

        if session.get("payment_status") != "paid":
            log.info("checkout_not_paid", session_id=session_id, payment_status=session.get("payment_status"))
            await self.ledger.mark_processed(event.id)
            return WebhookOutcome.SKIPPED

        if not email:
            log.error("checkout_email_missing", session_id=session_id)
            await self.ledger.mark_processed(event.id)
            return WebhookOutcome.SKIPPED

        message = render_welcome_email(
            to=email,
            access_link=build_access_link(self.site_url, session_id),
            support_email=self.support_email,
        )

        try:
            if self.timeout_seconds:
                await asyncio.wait_for(self.email_sender.send(message), timeout=self.timeout_seconds)
            else:
                await self.email_sender.send(message)
        except (Exception, asyncio.CancelledError) as e:
            log.error(
                "welcome_email_failed",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            # shield: a second cancellation must not abort the release
            await asyncio.shield(self.ledger.release(event.id))
            raise

        try:
            await self.ledger.mark_processed(event.id)
        except Exception:
            log.error("webhook_mark_processed_failed", session_id=session_id, exc_info=True)
            raise

        log.info("welcome_email_sent", session_id=session_id, email=email)
        return WebhookOutcome.PROCESSED
