"""RateLimitBucket model: one fixed-window counter per caller key."""

from sqlalchemy import Column, DateTime, Integer, String

from checkout_service.db.base import Base


class RateLimitBucket(Base):
    __tablename__ = "rate_limits"

    key = Column(String(255), primary_key=True)
    count = Column(Integer, nullable=False, default=0)
    window_expires_at = Column(DateTime(timezone=True), nullable=False)
