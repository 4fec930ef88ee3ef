from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, Index, Integer, String, Text

from truststartup.core.db import Base

StripeEventStatus = Enum(
    "received",
    "processed",
    "ignored",
    "rejected",
    "capacity_exceeded",
    "failed",
    name="stripe_event_status",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StripeEvent(Base):
    __tablename__ = "stripe_events"
    __table_args__ = (Index("ix_stripe_events_type_created", "type", "created_at"),)

    id = Column(Integer, primary_key=True)
    event_id = Column(String(120), unique=True, index=True, nullable=False)
    type = Column(String(120), nullable=False, index=True)
    livemode = Column(Boolean, nullable=False, default=False)
    object_id = Column(String(120), nullable=True, index=True)
    startup_id = Column(Integer, nullable=True, index=True)
    status = Column(StripeEventStatus, nullable=False, default="received")
    detail = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
