from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, validator

from truststartup.schemas.user import FounderProfileOut, FounderSummary

RevenueRange = Literal["7d", "30d", "90d"]


class StartupBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    company: Optional[str] = Field(None, max_length=255)
    website: Optional[str] = Field(None, max_length=500)
    avatar: Optional[str] = Field(None, max_length=500)
    bio: Optional[str] = None
    category: Optional[str] = Field(None, max_length=120)
    twitter: Optional[str] = Field(None, max_length=120)


class StartupCreate(StartupBase):
    stripe_key: str = Field(..., min_length=8, max_length=255)

    @validator("stripe_key")
    def validate_stripe_key(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned.startswith(("sk_", "rk_")):
            raise ValueError("Provide a Stripe secret or restricted key")
        return cleaned


class StartupUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    company: Optional[str] = Field(None, max_length=255)
    website: Optional[str] = Field(None, max_length=500)
    avatar: Optional[str] = Field(None, max_length=500)
    bio: Optional[str] = None
    category: Optional[str] = Field(None, max_length=120)
    twitter: Optional[str] = Field(None, max_length=120)


class StripeKeyUpdate(BaseModel):
    stripe_key: str = Field(..., min_length=8, max_length=255)

    @validator("stripe_key")
    def validate_stripe_key(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned.startswith(("sk_", "rk_")):
            raise ValueError("Provide a Stripe secret or restricted key")
        return cleaned


class StartupListItem(BaseModel):
    id: int
    name: str
    company: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None
    website: Optional[str] = None
    category: Optional[str] = None
    twitter: Optional[str] = None
    revenue: float = 0
    last_30_days: float = 0
    mrr: float = 0
    created_at: datetime
    founder: Optional[FounderSummary] = None

    class Config:
        from_attributes = True


class StartupOut(StartupListItem):
    last_synced: Optional[datetime] = None
    is_sponsored: bool = False
    sponsor_slot: Optional[int] = None
    sponsor_since: Optional[datetime] = None
    sponsor_duration_months: int = 0
    sponsor_expires_at: Optional[datetime] = None
    ad_views: int = 0
    ad_clicks: int = 0
    ad_generated_revenue: float = 0
    is_owner: bool = False


class StartupCreateResponse(BaseModel):
    startup_id: int


class SyncResult(BaseModel):
    revenue: float
    mrr: float
    last_synced: datetime


class StripeSummaryMetrics(BaseModel):
    gmv_all_time: float
    last_30_days: float
    mrr: float
    account_created_at: Optional[datetime] = None


class RevenuePoint(BaseModel):
    date: datetime
    revenue: float


class FounderPage(BaseModel):
    founder: FounderProfileOut
    startups: list[StartupOut]
