from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.database import get_db
from api.middleware.auth import get_current_user
from api.middleware.authorization import require_roles, OPERATOR_ROLES
from api.models.bid_award import BidAward
from api.models.bid_invite import BidInvite
from api.models.bid_package import BidAddendum, BidPackage
from api.models.bid_submission import BidSubmission
from api.models.file_link import FileLink
from api.schemas.attachment import AttachmentCreate, AttachmentResponse
from api.schemas.award import AwardOutcomeResponse, AwardRequest, AwardResponse
from api.schemas.bid_invite import (
    AccessCountsResponse,
    BidInviteResponse,
    BulkInviteCreate,
    BulkInviteResponse,
    FailedInviteResponse,
    InviteItemIn,
)
from api.schemas.bid_package import (
    AddendumCreate,
    AddendumIssueResponse,
    AddendumListResponse,
    AddendumResponse,
    BidPackageCreate,
    BidPackageResponse,
    BidPackageUpdate,
)
from api.schemas.common import PageParams, PaginatedResponse
from api.schemas.submission import SubmissionResponse
from api.services import (
    attachment_service,
    award_service,
    bid_package_service,
    invite_service,
    submission_service,
)
from api.services.access_service import AccessCounts
from api.services.invite_service import InviteItem

logger = structlog.get_logger()
router = APIRouter()

operator_only = require_roles(*OPERATOR_ROLES)


def iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def package_to_response(p: BidPackage) -> BidPackageResponse:
    return BidPackageResponse(
        id=str(p.id),
        tenant_id=str(p.tenant_id),
        project_id=str(p.project_id),
        title=p.title,
        trade=p.trade,
        scope=p.scope,
        instructions=p.instructions,
        due_at=iso(p.due_at),
        status=p.status,
        created_by=str(p.created_by) if p.created_by else None,
        created_at=iso(p.created_at) or "",
        updated_at=iso(p.updated_at) or "",
    )


def addendum_to_response(a: BidAddendum, acknowledged: Optional[bool] = None) -> AddendumResponse:
    return AddendumResponse(
        id=str(a.id),
        bid_package_id=str(a.bid_package_id),
        number=a.number,
        title=a.title,
        message=a.message,
        issued_at=iso(a.issued_at) or "",
        acknowledged=acknowledged,
    )


def submission_to_response(s: BidSubmission) -> SubmissionResponse:
    return SubmissionResponse(
        id=str(s.id),
        bid_invite_id=str(s.bid_invite_id),
        version=s.version,
        status=s.status,
        is_current=s.is_current,
        is_awarded=s.is_awarded,
        total_cents=s.total_cents,
        currency=s.currency,
        valid_until=iso(s.valid_until),
        lead_time_days=s.lead_time_days,
        duration_days=s.duration_days,
        start_available_on=iso(s.start_available_on),
        exclusions=s.exclusions,
        clarifications=s.clarifications,
        notes=s.notes,
        submitted_by_name=s.submitted_by_name,
        submitted_by_email=s.submitted_by_email,
        submitted_at=iso(s.submitted_at) or "",
    )


def invite_to_response(
    i: BidInvite, counts: Optional[AccessCounts] = None, portal_url: Optional[str] = None
) -> BidInviteResponse:
    return BidInviteResponse(
        id=str(i.id),
        bid_package_id=str(i.bid_package_id),
        company_id=str(i.company_id) if i.company_id else None,
        contact_id=str(i.contact_id) if i.contact_id else None,
        invite_email=i.invite_email,
        status=i.status,
        require_account=i.require_account,
        sent_at=iso(i.sent_at),
        last_viewed_at=iso(i.last_viewed_at),
        declined_at=iso(i.declined_at),
        submitted_at=iso(i.submitted_at),
        created_at=iso(i.created_at) or "",
        access=AccessCountsResponse(**counts.as_dict()) if counts else None,
        portal_url=portal_url,
    )


def award_to_response(a: BidAward) -> AwardResponse:
    return AwardResponse(
        id=str(a.id),
        bid_package_id=str(a.bid_package_id),
        awarded_submission_id=str(a.awarded_submission_id),
        awarded_commitment_id=a.awarded_commitment_id,
        awarded_by=str(a.awarded_by) if a.awarded_by else None,
        awarded_at=iso(a.awarded_at) or "",
        notes=a.notes,
    )


def attachment_to_response(link: FileLink) -> AttachmentResponse:
    return AttachmentResponse(
        id=str(link.id),
        entity_type=link.entity_type,
        entity_id=str(link.entity_id),
        file_id=str(link.file_id),
        created_at=iso(link.created_at) or "",
    )


# ---------- PACKAGES ----------


@router.post("", response_model=BidPackageResponse, status_code=status.HTTP_201_CREATED)
async def create_bid_package(
    body: BidPackageCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    package = await bid_package_service.create_package(
        db,
        tenant_id=current_user["tenant_id"],
        project_id=body.project_id,
        title=body.title,
        trade=body.trade,
        scope=body.scope,
        instructions=body.instructions,
        due_at=body.due_at,
        actor_id=current_user["user_id"],
    )
    return package_to_response(package)


@router.get("", response_model=PaginatedResponse[BidPackageResponse])
async def list_bid_packages(
    paging: PageParams = Depends(),
    project_id: Optional[str] = Query(None),
    package_status: Optional[str] = Query(None, alias="status"),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    packages, total = await bid_package_service.list_packages(
        db,
        tenant_id=current_user["tenant_id"],
        project_id=project_id,
        status=package_status,
        limit=paging.limit,
        offset=paging.offset,
    )
    return PaginatedResponse(
        data=[package_to_response(p) for p in packages],
        pagination=paging.meta(total),
    )


@router.get("/{package_id}", response_model=BidPackageResponse)
async def get_bid_package(
    package_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    package = await bid_package_service.get_package(db, package_id, tenant_id=current_user["tenant_id"])
    return package_to_response(package)


@router.patch("/{package_id}", response_model=BidPackageResponse)
async def update_bid_package(
    package_id: str,
    body: BidPackageUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    package = await bid_package_service.update_package(
        db,
        package_id,
        body.model_dump(exclude_unset=True),
        tenant_id=current_user["tenant_id"],
        actor_id=current_user["user_id"],
    )
    return package_to_response(package)


# ---------- INVITES ----------


@router.post("/{package_id}/invites", response_model=BulkInviteResponse, status_code=status.HTTP_201_CREATED)
async def create_bid_invites(
    package_id: str,
    body: BulkInviteCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    package = await bid_package_service.get_package(db, package_id, tenant_id=current_user["tenant_id"])
    result = await invite_service.create_invites(
        db,
        package.id,
        [InviteItem(**item.model_dump()) for item in body.items],
        send_emails=body.send_emails,
        actor_id=current_user["user_id"],
    )
    return BulkInviteResponse(
        created=[
            invite_to_response(i, portal_url=result.links[str(i.id)].url) for i in result.created
        ],
        failed=[
            FailedInviteResponse(
                index=f.index,
                item=InviteItemIn(**vars(f.item)),
                code=f.code,
                message=f.message,
                details=f.details,
            )
            for f in result.failed
        ],
        undelivered=result.undelivered,
        emails_sent=result.emails_sent,
        companies_created=result.companies_created,
    )


@router.get("/{package_id}/invites", response_model=list[BidInviteResponse])
async def list_bid_invites(
    package_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    package = await bid_package_service.get_package(db, package_id, tenant_id=current_user["tenant_id"])
    rows = await invite_service.list_invites(db, package.id)
    return [invite_to_response(invite, counts) for invite, counts in rows]


# ---------- ADDENDA ----------


@router.post("/{package_id}/addenda", response_model=AddendumIssueResponse, status_code=status.HTTP_201_CREATED)
async def issue_bid_addendum(
    package_id: str,
    body: AddendumCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    result = await bid_package_service.issue_addendum(
        db,
        package_id,
        title=body.title,
        message=body.message,
        notify=body.notify,
        tenant_id=current_user["tenant_id"],
        actor_id=current_user["user_id"],
    )
    return AddendumIssueResponse(
        addendum=addendum_to_response(result.addendum),
        notified=result.notified,
        notify_failed=result.notify_failed,
    )


@router.get("/{package_id}/addenda", response_model=AddendumListResponse)
async def list_bid_addenda(
    package_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    package = await bid_package_service.get_package(db, package_id, tenant_id=current_user["tenant_id"])
    addenda = await bid_package_service.list_addenda(db, package.id)
    return AddendumListResponse(data=[addendum_to_response(a) for a in addenda])


# ---------- SUBMISSIONS / AWARD ----------


@router.get("/{package_id}/submissions/current", response_model=list[SubmissionResponse])
async def list_current_submissions(
    package_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    package = await bid_package_service.get_package(db, package_id, tenant_id=current_user["tenant_id"])
    submissions = await submission_service.list_current_by_package(db, package.id)
    return [submission_to_response(s) for s in submissions]


@router.post("/{package_id}/award", response_model=AwardOutcomeResponse)
async def award_bid_package(
    package_id: str,
    body: AwardRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    package = await bid_package_service.get_package(db, package_id, tenant_id=current_user["tenant_id"])
    result = await award_service.award(
        db, package.id, body.submission_id, actor_id=current_user["user_id"], notes=body.notes
    )
    # The award stands on its own; the commitment is requested afterwards
    await db.commit()
    result = await award_service.request_commitment(db, result)

    return AwardOutcomeResponse(
        award=award_to_response(result.award),
        package_status=result.package.status,
        degraded=result.degraded,
        commitment_error=result.commitment_error,
    )


@router.get("/{package_id}/award", response_model=Optional[AwardResponse])
async def get_bid_award(
    package_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    package = await bid_package_service.get_package(db, package_id, tenant_id=current_user["tenant_id"])
    award = await award_service.get_award(db, package.id)
    return award_to_response(award) if award else None


# ---------- ATTACHMENTS ----------


@router.post("/{package_id}/attachments", response_model=AttachmentResponse, status_code=status.HTTP_201_CREATED)
async def attach_bid_file(
    package_id: str,
    body: AttachmentCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    package = await bid_package_service.get_package(db, package_id, tenant_id=current_user["tenant_id"])
    link = await attachment_service.attach(
        db,
        tenant_id=package.tenant_id,
        entity_type=body.entity_type,
        entity_id=body.entity_id or package.id,
        file_id=body.file_id,
        actor_id=current_user["user_id"],
    )
    return attachment_to_response(link)


@router.get("/{package_id}/attachments", response_model=list[AttachmentResponse])
async def list_bid_files(
    package_id: str,
    entity_type: str = Query("bid_package"),
    entity_id: Optional[str] = Query(None),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(operator_only),
    db: AsyncSession = Depends(get_db),
):
    package = await bid_package_service.get_package(db, package_id, tenant_id=current_user["tenant_id"])
    links = await attachment_service.list_links(
        db, package.tenant_id, entity_type, entity_id or package.id
    )
    return [attachment_to_response(link) for link in links]
