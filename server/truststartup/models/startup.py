from __future__ import annotations

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from truststartup.core.db import Base


class Startup(Base):
    __tablename__ = "startups"
    __table_args__ = (
        CheckConstraint("sponsor_slot IS NULL OR sponsor_slot >= 1", name="ck_startups_sponsor_slot_positive"),
    )

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    company = Column(String(255), nullable=True)
    website = Column(String(500), nullable=True)
    avatar = Column(String(500), nullable=True)
    bio = Column(Text, nullable=True)
    category = Column(String(120), nullable=True, index=True)
    twitter = Column(String(120), nullable=True)
    stripe_key = Column(String(255), nullable=False)

    revenue = Column(Float, nullable=False, default=0)
    last_30_days = Column(Float, nullable=False, default=0)
    mrr = Column(Float, nullable=False, default=0)
    last_synced = Column(DateTime(timezone=True), nullable=True)

    # Slot is NULL whenever the startup is not sponsored, so the unique
    # constraint is exactly "no two sponsored startups share a slot".
    is_sponsored = Column(Boolean, nullable=False, default=False, index=True)
    sponsor_slot = Column(Integer, nullable=True, unique=True)
    sponsor_since = Column(DateTime(timezone=True), nullable=True)
    sponsor_duration_months = Column(Integer, nullable=False, default=0)
    sponsor_expires_at = Column(DateTime(timezone=True), nullable=True, index=True)

    ad_views = Column(Integer, nullable=False, default=0)
    ad_clicks = Column(Integer, nullable=False, default=0)
    ad_generated_revenue = Column(Float, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    owner = relationship("User", back_populates="startups", lazy="joined")
    sponsor_audits = relationship(
        "SponsorAudit",
        back_populates="startup",
        cascade="all, delete-orphan",
        order_by="SponsorAudit.id.desc()",
    )
