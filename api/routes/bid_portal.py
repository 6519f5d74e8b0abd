"""
Vendor-facing bid portal. The link token in the path is the credential; a
bearer token is optional and, when present, lets a linked vendor account
get through even if links are paused or an account is required. A
PIN-protected link needs the X-Bid-Pin-Session header from POST {token}/pin.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.config import settings
from api.database import get_db
from api.errors import ConcurrencyConflictError, PinRejectedError
from api.middleware.auth import get_current_user, get_optional_user
from api.routes.bid_packages import iso, addendum_to_response, submission_to_response
from api.schemas.portal import (
    AcknowledgementResponse,
    LinkAccountResponse,
    PinSessionResponse,
    PinVerifyRequest,
    PortalBidResponse,
    PortalPackageView,
)
from api.schemas.submission import SubmissionCreate, SubmissionResponse
from api.services import access_service, bid_package_service, invite_service, submission_service
from api.services.submission_service import SubmissionPayload

logger = structlog.get_logger()
router = APIRouter()


def _user_id(user: Optional[dict]) -> Optional[str]:
    return user["user_id"] if user else None


def pin_session_header(
    x_bid_pin_session: Optional[str] = Header(None, alias="X-Bid-Pin-Session"),
) -> Optional[str]:
    return x_bid_pin_session


@router.get("/{token}", response_model=PortalBidResponse)
async def open_bid(
    token: str,
    user: Optional[dict] = Depends(get_optional_user),
    pin_session: Optional[str] = Depends(pin_session_header),
    db: AsyncSession = Depends(get_db),
):
    access = await access_service.verify(
        db, token, user_id=_user_id(user), record_access=True, pin_session=pin_session
    )
    invite = await invite_service.record_view(db, access.invite.id)
    package = await bid_package_service.get_package(db, invite.bid_package_id)

    addenda = await bid_package_service.list_addenda(db, package.id)
    acked = await bid_package_service.acknowledged_addendum_ids(db, invite.id)
    history = await submission_service.list_history(db, invite.id)
    current = next((s for s in history if s.is_current), None)

    return PortalBidResponse(
        bid_invite_id=str(invite.id),
        invite_status=invite.status,
        channel=access.channel,
        require_account=invite.require_account,
        package=PortalPackageView(
            id=str(package.id),
            title=package.title,
            trade=package.trade,
            scope=package.scope,
            instructions=package.instructions,
            due_at=iso(package.due_at),
            status=package.status,
        ),
        addenda=[addendum_to_response(a, acknowledged=str(a.id) in acked) for a in addenda],
        current_submission=submission_to_response(current) if current else None,
    )


@router.post("/{token}/decline", status_code=status.HTTP_200_OK)
async def decline_bid(
    token: str,
    user: Optional[dict] = Depends(get_optional_user),
    pin_session: Optional[str] = Depends(pin_session_header),
    db: AsyncSession = Depends(get_db),
):
    access = await access_service.verify(
        db, token, user_id=_user_id(user), pin_session=pin_session
    )
    invite = await invite_service.record_decline(db, access.invite.id, actor_id=_user_id(user))
    return {"bid_invite_id": str(invite.id), "status": invite.status, "declined_at": iso(invite.declined_at)}


@router.post("/{token}/submissions", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def submit_bid(
    token: str,
    body: SubmissionCreate,
    user: Optional[dict] = Depends(get_optional_user),
    pin_session: Optional[str] = Depends(pin_session_header),
    db: AsyncSession = Depends(get_db),
):
    access = await access_service.verify(
        db, token, user_id=_user_id(user), pin_session=pin_session
    )
    payload = SubmissionPayload(**body.model_dump())

    attempts = max(1, settings.SUBMISSION_RETRY_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        try:
            submission = await submission_service.submit(
                db, access.invite.id, payload, actor_id=_user_id(user)
            )
            break
        except ConcurrencyConflictError:
            if attempt == attempts:
                raise
            logger.info("bid_submission_retry", bid_invite_id=str(access.invite.id), attempt=attempt)

    return submission_to_response(submission)


@router.post("/{token}/addenda/{addendum_id}/acknowledge", response_model=AcknowledgementResponse)
async def acknowledge_bid_addendum(
    token: str,
    addendum_id: str,
    user: Optional[dict] = Depends(get_optional_user),
    pin_session: Optional[str] = Depends(pin_session_header),
    db: AsyncSession = Depends(get_db),
):
    access = await access_service.verify(
        db, token, user_id=_user_id(user), pin_session=pin_session
    )
    ack = await bid_package_service.acknowledge_addendum(db, access.invite, addendum_id)
    return AcknowledgementResponse(
        bid_addendum_id=str(ack.bid_addendum_id),
        bid_invite_id=str(ack.bid_invite_id),
        acknowledged_at=iso(ack.acknowledged_at) or "",
    )


@router.post("/{token}/link-account", response_model=LinkAccountResponse)
async def link_bid_account(
    token: str,
    user: dict = Depends(get_current_user),
    pin_session: Optional[str] = Depends(pin_session_header),
    db: AsyncSession = Depends(get_db),
):
    # The link itself must still be usable to claim the invite
    access = await access_service.verify(
        db, token, enforce_account=False, pin_session=pin_session
    )
    grant = await access_service.link_account_grant(db, access.invite.id, user["user_id"])
    return LinkAccountResponse(
        grant_id=str(grant.id),
        bid_invite_id=str(access.invite.id),
        linked_user_id=str(grant.linked_user_id),
        state=grant.state,
    )


@router.post("/{token}/pin", response_model=PinSessionResponse)
async def verify_bid_pin(
    token: str,
    body: PinVerifyRequest,
    db: AsyncSession = Depends(get_db),
):
    check = await access_service.verify_pin(db, token, body.pin)
    if not check.valid:
        # returned, not raised, so the attempt counter is committed
        error = PinRejectedError(check.attempts_remaining or 0, iso(check.locked_until))
        return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})
    return PinSessionResponse(
        pin_session=check.pin_session,
        expires_at=iso(check.session_expires_at),
    )
