from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class FounderSummary(BaseModel):
    id: int
    username: str
    first_name: str
    last_name: str
    avatar: Optional[str] = None

    class Config:
        from_attributes = True


class FounderProfileUpdate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=120)
    last_name: str = Field(..., min_length=1, max_length=120)
    username: str = Field(..., min_length=3, max_length=32)
    bio: Optional[str] = Field(None, max_length=2000)
    avatar: Optional[str] = Field(None, max_length=500)


class FounderProfileOut(FounderSummary):
    bio: Optional[str] = None
    created_at: datetime
