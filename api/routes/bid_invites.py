from typing import Literal, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.database import get_db
from api.middleware.auth import get_current_user
from api.middleware.authorization import require_roles, check_tenant_scope, OPERATOR_ROLES
from api.routes.bid_packages import invite_to_response, submission_to_response
from api.schemas.bid_invite import (
    AccessCountsResponse,
    BidInviteResponse,
    ChannelTransitionResponse,
    IssueLinkRequest,
    IssuedLinkResponse,
    LinkPinRequest,
    LinkPinResponse,
    RequireAccountRequest,
)
from api.schemas.submission import SubmissionResponse
from api.services import access_service, invite_service, submission_service

logger = structlog.get_logger()
router = APIRouter()

operator_only = require_roles(*OPERATOR_ROLES)

_CHANNEL_ACTIONS = {
    "pause": access_service.pause_channel,
    "resume": access_service.resume_channel,
    "revoke": access_service.revoke_channel,
}


async def _load_invite(db: AsyncSession, invite_id: str, current_user: dict):
    invite = await invite_service.get_invite(db, invite_id)
    check_tenant_scope(current_user, invite.tenant_id)
    return invite


@router.post("/{invite_id}/links", response_model=IssuedLinkResponse, status_code=status.HTTP_201_CREATED)
async def issue_bid_link(
    invite_id: str,
    body: Optional[IssueLinkRequest] = None,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    body = body or IssueLinkRequest()
    invite = await _load_invite(db, invite_id, current_user)
    issued = await access_service.issue_link_grant(
        db,
        invite.id,
        created_by=current_user["user_id"],
        expires_at=body.expires_at,
        max_access_count=body.max_access_count,
        pin=body.pin,
    )
    return IssuedLinkResponse(
        grant_id=str(issued.grant.id),
        bid_invite_id=str(invite.id),
        token=issued.token,
        url=issued.url,
        expires_at=issued.grant.expires_at.isoformat() if issued.grant.expires_at else None,
        max_access_count=issued.grant.max_access_count,
        invite_status=invite.status,
        pin_required=issued.grant.pin_required,
    )


@router.put("/{invite_id}/links/{grant_id}/pin", response_model=LinkPinResponse)
async def set_bid_link_pin(
    invite_id: str,
    grant_id: str,
    body: LinkPinRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    invite = await _load_invite(db, invite_id, current_user)
    grant = await access_service.set_link_pin(
        db, invite.id, grant_id, body.pin, actor_id=current_user["user_id"]
    )
    return LinkPinResponse(
        grant_id=str(grant.id), bid_invite_id=str(invite.id), pin_required=grant.pin_required
    )


@router.delete("/{invite_id}/links/{grant_id}/pin", response_model=LinkPinResponse)
async def clear_bid_link_pin(
    invite_id: str,
    grant_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    invite = await _load_invite(db, invite_id, current_user)
    grant = await access_service.clear_link_pin(
        db, invite.id, grant_id, actor_id=current_user["user_id"]
    )
    return LinkPinResponse(
        grant_id=str(grant.id), bid_invite_id=str(invite.id), pin_required=grant.pin_required
    )


@router.post("/{invite_id}/access/{channel}/{action}", response_model=ChannelTransitionResponse)
async def transition_bid_access(
    invite_id: str,
    channel: Literal["link", "account"],
    action: Literal["pause", "resume", "revoke"],
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    invite = await _load_invite(db, invite_id, current_user)
    changed = await _CHANNEL_ACTIONS[action](
        db, invite.id, channel, actor_id=current_user["user_id"]
    )
    counts = await access_service.counts(db, invite.id)
    return ChannelTransitionResponse(
        bid_invite_id=str(invite.id),
        channel=channel,
        action=action,
        changed=changed,
        access=AccessCountsResponse(**counts.as_dict()),
    )


@router.put("/{invite_id}/require-account", response_model=BidInviteResponse)
async def set_bid_require_account(
    invite_id: str,
    body: RequireAccountRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    invite = await _load_invite(db, invite_id, current_user)
    invite = await invite_service.set_require_account(
        db, invite.id, body.enforced, actor_id=current_user["user_id"]
    )
    counts = await access_service.counts(db, invite.id)
    return invite_to_response(invite, counts)


@router.get("/{invite_id}/submissions", response_model=list[SubmissionResponse])
async def list_bid_submission_history(
    invite_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    invite = await _load_invite(db, invite_id, current_user)
    history = await submission_service.list_history(db, invite.id)
    return [submission_to_response(s) for s in history]
