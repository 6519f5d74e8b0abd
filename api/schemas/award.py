from typing import Optional

from pydantic import BaseModel, Field


class AwardRequest(BaseModel):
    submission_id: str
    notes: Optional[str] = Field(None, max_length=5000)


class AwardResponse(BaseModel):
    id: str
    bid_package_id: str
    awarded_submission_id: str
    awarded_commitment_id: Optional[str] = None
    awarded_by: Optional[str] = None
    awarded_at: str
    notes: Optional[str] = None


class AwardOutcomeResponse(BaseModel):
    award: AwardResponse
    package_status: str
    degraded: bool = False
    commitment_error: Optional[str] = None
