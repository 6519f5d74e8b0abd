from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class SubmissionCreate(BaseModel):
    total_cents: Optional[int] = Field(None, ge=0)
    currency: str = Field("usd", min_length=3, max_length=3)
    valid_until: Optional[date] = None
    lead_time_days: Optional[int] = Field(None, ge=0)
    duration_days: Optional[int] = Field(None, ge=0)
    start_available_on: Optional[date] = None
    exclusions: Optional[str] = Field(None, max_length=20000)
    clarifications: Optional[str] = Field(None, max_length=20000)
    notes: Optional[str] = Field(None, max_length=20000)
    submitted_by_name: Optional[str] = Field(None, max_length=200)
    submitted_by_email: Optional[str] = Field(None, max_length=255)


class SubmissionResponse(BaseModel):
    id: str
    bid_invite_id: str
    version: int
    status: str
    is_current: bool
    is_awarded: bool
    total_cents: Optional[int] = None
    currency: str
    valid_until: Optional[str] = None
    lead_time_days: Optional[int] = None
    duration_days: Optional[int] = None
    start_available_on: Optional[str] = None
    exclusions: Optional[str] = None
    clarifications: Optional[str] = None
    notes: Optional[str] = None
    submitted_by_name: Optional[str] = None
    submitted_by_email: Optional[str] = None
    submitted_at: str
