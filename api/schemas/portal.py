from typing import List, Optional

from pydantic import BaseModel, Field

from api.schemas.bid_package import AddendumResponse
from api.schemas.submission import SubmissionResponse


class PortalPackageView(BaseModel):
    id: str
    title: str
    trade: Optional[str] = None
    scope: Optional[str] = None
    instructions: Optional[str] = None
    due_at: Optional[str] = None
    status: str


class PortalBidResponse(BaseModel):
    bid_invite_id: str
    invite_status: str
    channel: str
    require_account: bool
    package: PortalPackageView
    addenda: List[AddendumResponse] = []
    current_submission: Optional[SubmissionResponse] = None


class AcknowledgementResponse(BaseModel):
    bid_addendum_id: str
    bid_invite_id: str
    acknowledged_at: str


class LinkAccountResponse(BaseModel):
    grant_id: str
    bid_invite_id: str
    linked_user_id: str
    state: str


class PinVerifyRequest(BaseModel):
    pin: str = Field(..., pattern=r"^\d{4,8}$")


class PinSessionResponse(BaseModel):
    pin_session: str
    expires_at: str
