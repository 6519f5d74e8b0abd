from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class InviteItemIn(BaseModel):
    company_id: Optional[str] = None
    contact_id: Optional[str] = None
    email: Optional[str] = Field(None, max_length=255)
    name: Optional[str] = Field(None, max_length=200)

    @model_validator(mode="after")
    def exactly_one_target(self):
        targets = [v for v in (self.company_id, self.contact_id, self.email) if v]
        if len(targets) != 1:
            raise ValueError("Provide exactly one of company_id, contact_id or email")
        return self


class BulkInviteCreate(BaseModel):
    items: List[InviteItemIn] = Field(..., min_length=1, max_length=200)
    send_emails: bool = True


class AccessCountsResponse(BaseModel):
    active_access_count: int = 0
    paused_access_count: int = 0
    access_total: int = 0
    linked_account_count: int = 0
    linked_active_account_count: int = 0
    linked_paused_account_count: int = 0


class BidInviteResponse(BaseModel):
    id: str
    bid_package_id: str
    company_id: Optional[str] = None
    contact_id: Optional[str] = None
    invite_email: Optional[str] = None
    status: str
    require_account: bool
    sent_at: Optional[str] = None
    last_viewed_at: Optional[str] = None
    declined_at: Optional[str] = None
    submitted_at: Optional[str] = None
    created_at: str
    access: Optional[AccessCountsResponse] = None
    portal_url: Optional[str] = None


class FailedInviteResponse(BaseModel):
    index: int
    item: InviteItemIn
    code: str
    message: str
    details: dict = {}


class BulkInviteResponse(BaseModel):
    created: List[BidInviteResponse] = []
    failed: List[FailedInviteResponse] = []
    undelivered: List[str] = []
    emails_sent: int = 0
    companies_created: int = 0


class IssueLinkRequest(BaseModel):
    expires_at: Optional[datetime] = None
    max_access_count: Optional[int] = Field(None, ge=1)
    pin: Optional[str] = Field(None, pattern=r"^\d{4,8}$")


class IssuedLinkResponse(BaseModel):
    grant_id: str
    bid_invite_id: str
    token: str
    url: str
    expires_at: Optional[str] = None
    max_access_count: Optional[int] = None
    invite_status: str
    pin_required: bool = False


class ChannelTransitionResponse(BaseModel):
    bid_invite_id: str
    channel: str
    action: str
    changed: int
    access: AccessCountsResponse


class RequireAccountRequest(BaseModel):
    enforced: bool


class LinkPinRequest(BaseModel):
    pin: str = Field(..., pattern=r"^\d{4,8}$")


class LinkPinResponse(BaseModel):
    grant_id: str
    bid_invite_id: str
    pin_required: bool
