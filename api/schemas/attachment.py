from typing import Literal, Optional

from pydantic import BaseModel

AttachableEntity = Literal["bid_package", "bid_addendum", "bid_submission"]


class AttachmentCreate(BaseModel):
    file_id: str
    entity_type: AttachableEntity = "bid_package"
    entity_id: Optional[str] = None


class AttachmentResponse(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    file_id: str
    created_at: str
