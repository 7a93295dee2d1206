"""WebhookEvent model for exactly-once webhook processing."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, String

from checkout_service.db.base import Base


class WebhookEvent(Base):
    """Ledger row per provider event id.

    A row with processed=False is a live reservation; deleting it makes the
    event eligible for processing again.
    """

    __tablename__ = "webhook_events"

    event_id = Column(String(255), primary_key=True)
    processed = Column(Boolean, nullable=False, default=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    processed_at = Column(DateTime(timezone=True), nullable=True)
