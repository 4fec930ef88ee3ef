from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

SponsorAuditAction = Literal["Assigned", "Extended", "Cancelled", "Expired"]


class AssignRequest(BaseModel):
    startup_id: int = Field(..., ge=1)
    paid_months: int = Field(1, ge=1, le=12)


class AssignResult(BaseModel):
    startup_id: int
    slot: int
    since: datetime
    expires_at: datetime
    already_sponsored: bool = False


class ExtendRequest(BaseModel):
    months: int = Field(..., ge=1, le=120)


class ExtendResult(BaseModel):
    startup_id: int
    slot: int
    new_expires_at: datetime
    duration_months: int


class CancelResult(BaseModel):
    startup_id: int
    released_slot: Optional[int] = None
    success: bool = True


class SponsorAvailability(BaseModel):
    max_slots: int
    occupied: list[int]
    available: int


class SponsorAuditOut(BaseModel):
    id: int
    action: SponsorAuditAction
    slot: Optional[int] = None
    months: Optional[int] = None
    expires_before: Optional[datetime] = None
    expires_after: Optional[datetime] = None
    source: Optional[str] = None
    actor_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SweepResult(BaseModel):
    checked: int = 0
    expired: int = 0
    failed: int = 0
    expired_startup_ids: list[int] = Field(default_factory=list)


class CheckoutRequest(BaseModel):
    startup_id: int = Field(..., ge=1)
    months: int = Field(1, ge=1, le=12)


class CheckoutResponse(BaseModel):
    url: str
    session_id: str
    amount_cents: int
    months: int
