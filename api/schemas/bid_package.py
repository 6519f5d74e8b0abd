from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

PackageStatus = Literal["draft", "sent", "open", "closed", "awarded", "cancelled"]


class BidPackageCreate(BaseModel):
    project_id: str
    title: str = Field(..., min_length=1, max_length=300)
    trade: Optional[str] = Field(None, max_length=100)
    scope: Optional[str] = None
    instructions: Optional[str] = None
    due_at: Optional[datetime] = None


class BidPackageUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    trade: Optional[str] = Field(None, max_length=100)
    scope: Optional[str] = None
    instructions: Optional[str] = None
    due_at: Optional[datetime] = None
    status: Optional[PackageStatus] = None


class BidPackageResponse(BaseModel):
    id: str
    tenant_id: str
    project_id: str
    title: str
    trade: Optional[str] = None
    scope: Optional[str] = None
    instructions: Optional[str] = None
    due_at: Optional[str] = None
    status: str
    created_by: Optional[str] = None
    created_at: str
    updated_at: str


class AddendumCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=300)
    message: Optional[str] = Field(None, max_length=20000)
    notify: bool = False


class AddendumResponse(BaseModel):
    id: str
    bid_package_id: str
    number: int
    title: Optional[str] = None
    message: Optional[str] = None
    issued_at: str
    acknowledged: Optional[bool] = None


class AddendumIssueResponse(BaseModel):
    addendum: AddendumResponse
    notified: int = 0
    notify_failed: int = 0


class AddendumListResponse(BaseModel):
    data: List[AddendumResponse] = []
