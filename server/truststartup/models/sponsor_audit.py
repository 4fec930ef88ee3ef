from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from truststartup.core.db import Base

SponsorAuditAction = Enum("Assigned", "Extended", "Cancelled", "Expired", name="sponsor_audit_action")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SponsorAudit(Base):
    __tablename__ = "sponsor_audits"

    id = Column(Integer, primary_key=True)
    startup_id = Column(Integer, ForeignKey("startups.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(SponsorAuditAction, nullable=False)
    slot = Column(Integer, nullable=True)
    months = Column(Integer, nullable=True)
    expires_before = Column(DateTime(timezone=True), nullable=True)
    expires_after = Column(DateTime(timezone=True), nullable=True)
    source = Column(String(60), nullable=True)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    startup = relationship("Startup", back_populates="sponsor_audits")
    actor = relationship("User", foreign_keys=[actor_id])
