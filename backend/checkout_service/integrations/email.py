"""Email delivery through the Resend HTTP API."""

from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

from checkout_service.core.exceptions import EmailDeliveryError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    html: str


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> str:
        """Deliver the message, returning the provider's message id.

        Raises EmailDeliveryError on failure.
        """
        ...


class ResendClient:
    """Client for the Resend transactional email API."""

    BASE_URL = "https://api.resend.com"

    def __init__(
        self,
        api_key: str,
        sender: str,
        reply_to: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the Resend client.

        Args:
            api_key: Resend API key
            sender: "From" header, e.g. "Kurs <noreply@example.com>"
            reply_to: Optional Reply-To address
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.api_key = api_key
        self.sender = sender
        self.reply_to = reply_to
        self.timeout = timeout
        self._transport = transport

    async def send(self, message: EmailMessage) -> str:
        if not self.api_key:
            raise EmailDeliveryError("Resend API key not configured")

        payload = {
            "from": self.sender,
            "to": [message.to],
            "subject": message.subject,
            "text": message.text,
            "html": message.html,
        }
        if self.reply_to:
            payload["reply_to"] = self.reply_to

        async with httpx.AsyncClient(
            base_url=self.BASE_URL,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            try:
                response = await client.post(
                    "/emails",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                )
            except httpx.HTTPError as e:
                raise EmailDeliveryError(f"Email request failed: {e}") from e

        if response.status_code >= 300:
            logger.error("email_rejected", status_code=response.status_code, to=message.to)
            raise EmailDeliveryError(
                f"Email provider returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        message_id = response.json().get("id", "")
        logger.info("email_sent", message_id=message_id, to=message.to)
        return message_id
