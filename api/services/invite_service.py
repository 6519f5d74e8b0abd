"""
Invite registry: bulk invite creation and vendor-driven status changes.

Status machine:
    draft --(dispatch ok)--> sent --(view)--> viewed --(submit)--> submitted
    {draft, sent, viewed} --(decline)--> declined
    declined --(submit)--> submitted   (explicit re-open, audited as such)

Bulk creation reports per-item failures instead of raising; each item runs
in its own SAVEPOINT so one bad item never rolls back the others.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.clock import utcnow
from api.errors import (
    AlreadyInvitedError,
    BidflowError,
    DuplicateVendorError,
    InvalidTransitionError,
    NoAccessIssuedError,
    NotFoundError,
    ValidationError,
)
from api.models.bid_invite import BidInvite
from api.models.bid_package import BidPackage
from api.services import access_service, directory_service
from api.services.access_service import AccessCounts, IssuedLink
from api.services.audit_service import create_audit_log, snapshot
from api.services.notification_service import send_notification
from api.utils import as_uuid

logger = structlog.get_logger()

INVITE_CLOSED_PACKAGE_STATUSES = ("awarded", "cancelled")


@dataclass
class InviteItem:
    company_id: Optional[str] = None
    contact_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass
class FailedInvite:
    index: int
    item: InviteItem
    code: str
    message: str
    details: dict = field(default_factory=dict)


@dataclass
class BulkInviteResult:
    created: list[BidInvite] = field(default_factory=list)
    failed: list[FailedInvite] = field(default_factory=list)
    links: dict[str, IssuedLink] = field(default_factory=dict)
    undelivered: list[str] = field(default_factory=list)
    emails_sent: int = 0
    companies_created: int = 0


async def get_invite(session: AsyncSession, invite_id, for_update: bool = False) -> BidInvite:
    q = select(BidInvite).where(BidInvite.id == as_uuid(invite_id, "bid_invite_id"))
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q)
    invite = result.scalar_one_or_none()
    if not invite:
        raise NotFoundError("Bid invite not found", {"bid_invite_id": str(invite_id)})
    return invite


async def _get_package(session: AsyncSession, package_id) -> BidPackage:
    result = await session.execute(
        select(BidPackage).where(BidPackage.id == as_uuid(package_id, "bid_package_id"))
    )
    package = result.scalar_one_or_none()
    if not package:
        raise NotFoundError("Bid package not found", {"bid_package_id": str(package_id)})
    return package


def _validate_items(items: list[InviteItem]) -> None:
    if not items:
        raise ValidationError("At least one invite item is required")
    for index, item in enumerate(items):
        keys = [k for k in (item.company_id, item.contact_id, item.email) if k]
        if len(keys) != 1:
            raise ValidationError(
                "Each invite item needs exactly one of company_id, contact_id or email",
                {"index": index},
            )
        if item.email and "@" not in item.email:
            raise ValidationError("Invalid invite email", {"index": index, "email": item.email})
        if item.company_id:
            as_uuid(item.company_id, "company_id")
        if item.contact_id:
            as_uuid(item.contact_id, "contact_id")


async def _existing_keys(session: AsyncSession, package_id) -> dict[str, set]:
    result = await session.execute(
        select(BidInvite.company_id, BidInvite.contact_id, BidInvite.invite_email).where(
            BidInvite.bid_package_id == package_id
        )
    )
    keys: dict[str, set] = {"company": set(), "contact": set(), "email": set()}
    for company_id, contact_id, email in result.all():
        if company_id:
            keys["company"].add(str(company_id))
        if contact_id:
            keys["contact"].add(str(contact_id))
        if email:
            keys["email"].add(email.lower())
    return keys


async def _build_invite(
    session: AsyncSession,
    package: BidPackage,
    item: InviteItem,
    existing: dict[str, set],
    actor_id: Optional[str],
) -> tuple[BidInvite, Optional[str], bool]:
    """Resolve one item to a new draft invite. Returns (invite, recipient name, company created)."""
    company_id = contact_id = invite_email = recipient_name = None
    company_created = False

    if item.company_id:
        company = await directory_service.get_company(
            session, package.tenant_id, as_uuid(item.company_id, "company_id")
        )
        if not company:
            raise NotFoundError("Company not found", {"company_id": item.company_id})
        company_id, invite_email, recipient_name = company.id, company.email, company.name

    elif item.contact_id:
        contact = await directory_service.get_contact(
            session, package.tenant_id, as_uuid(item.contact_id, "contact_id")
        )
        if not contact:
            raise NotFoundError("Contact not found", {"contact_id": item.contact_id})
        contact_id, company_id = contact.id, contact.company_id
        invite_email, recipient_name = contact.email, contact.full_name

    else:
        email = directory_service.normalize_email(item.email)
        if email in existing["email"]:
            raise AlreadyInvitedError("This email is already invited to the package", {"email": email})
        match = await directory_service.find_by_email(session, package.tenant_id, email)
        if match:
            raise DuplicateVendorError(email, str(match.id))
        company = await directory_service.create(
            session, package.tenant_id, email, name=item.name, trade=package.trade
        )
        company_created = True
        company_id, invite_email = company.id, email
        recipient_name = item.name or company.name

    invite_email = directory_service.normalize_email(invite_email)
    if (
        (company_id and str(company_id) in existing["company"])
        or (contact_id and str(contact_id) in existing["contact"])
        or (invite_email and invite_email in existing["email"])
    ):
        raise AlreadyInvitedError(
            "This vendor is already invited to the package",
            {"company_id": str(company_id) if company_id else None},
        )

    invite = BidInvite(
        tenant_id=package.tenant_id,
        bid_package_id=package.id,
        company_id=company_id,
        contact_id=contact_id,
        invite_email=invite_email,
        status="draft",
        created_by=as_uuid(actor_id, "actor_id") if actor_id else None,
    )
    session.add(invite)
    await session.flush()
    return invite, recipient_name, company_created


def _invite_context(package: BidPackage, recipient_name: Optional[str], url: str) -> dict:
    return {
        "recipient_name": recipient_name or "there",
        "package_title": package.title,
        "trade_suffix": f" ({package.trade})" if package.trade else "",
        "due_display": package.due_at.strftime("%d %b %Y %H:%M UTC") if package.due_at else "not set",
        "portal_url": url,
    }


async def create_invites(
    session: AsyncSession,
    package_id,
    items: list[InviteItem],
    send_emails: bool,
    actor_id: Optional[str] = None,
) -> BulkInviteResult:
    """
    Create one draft invite per accepted item, mint its first link, and
    optionally email it. An invite reaches "sent" only when the email was
    accepted by the gateway; otherwise it stays draft and is listed in
    result.undelivered.

    Emails go out while the caller's transaction is still open, because the
    "sent" status depends on delivery and is written in that transaction.
    Two consequences follow. If the final commit fails, vendors may hold
    links to invites that were rolled back; those links verify as not_found.
    Gateway retries with back-off also hold the transaction open, so large
    batches are better created with send_emails=False and their links
    handed out separately.
    """
    _validate_items(items)
    package = await _get_package(session, package_id)
    if package.status in INVITE_CLOSED_PACKAGE_STATUSES:
        raise InvalidTransitionError(
            f"Cannot invite vendors to a {package.status} bid package",
            {"status": package.status},
        )

    existing = await _existing_keys(session, package.id)
    result = BulkInviteResult()

    for index, item in enumerate(items):
        try:
            async with session.begin_nested():
                invite, recipient_name, company_created = await _build_invite(
                    session, package, item, existing, actor_id
                )
                link = await access_service.issue_link_grant(
                    session, invite.id, created_by=actor_id, mark_sent=False
                )
                await create_audit_log(
                    session,
                    tenant_id=package.tenant_id,
                    actor_id=actor_id,
                    action="insert",
                    entity_type="bid_invite",
                    entity_id=invite.id,
                    after_state=snapshot(invite),
                )
        except BidflowError as exc:
            logger.info(
                "bid_invite_item_rejected",
                bid_package_id=str(package.id),
                index=index,
                code=exc.code,
            )
            result.failed.append(
                FailedInvite(index=index, item=item, code=exc.code, message=exc.message, details=exc.details)
            )
            continue
        except IntegrityError:
            # lost a race with a concurrent invite for the same vendor
            logger.warning("bid_invite_item_conflict", bid_package_id=str(package.id), index=index)
            result.failed.append(
                FailedInvite(
                    index=index,
                    item=item,
                    code=AlreadyInvitedError.code,
                    message="This vendor is already invited to the package",
                )
            )
            continue

        if invite.company_id:
            existing["company"].add(str(invite.company_id))
        if invite.contact_id:
            existing["contact"].add(str(invite.contact_id))
        if invite.invite_email:
            existing["email"].add(invite.invite_email)

        result.created.append(invite)
        if company_created:
            result.companies_created += 1
        result.links[str(invite.id)] = link
        logger.info("bid_invite_created", bid_package_id=str(package.id), bid_invite_id=str(invite.id))

        if not send_emails:
            continue
        if not invite.invite_email:
            result.undelivered.append(str(invite.id))
            continue

        delivered = await send_notification(
            "bid_invite",
            invite.invite_email,
            _invite_context(package, recipient_name, link.url),
        )
        if delivered:
            invite.status = "sent"
            invite.sent_at = utcnow()
            result.emails_sent += 1
        else:
            result.undelivered.append(str(invite.id))
            logger.warning("bid_invite_email_failed", bid_invite_id=str(invite.id))

    await session.flush()
    logger.info(
        "bid_invites_bulk_created",
        bid_package_id=str(package.id),
        created=len(result.created),
        failed=len(result.failed),
        emails_sent=result.emails_sent,
        companies_created=result.companies_created,
    )
    return result


async def record_view(session: AsyncSession, invite_id) -> BidInvite:
    """Idempotent. Only sent → viewed; later states never regress."""
    invite = await get_invite(session, invite_id, for_update=True)
    invite.last_viewed_at = utcnow()
    if invite.status == "sent":
        invite.status = "viewed"
        logger.info("bid_invite_viewed", bid_invite_id=str(invite.id))
    await session.flush()
    return invite


async def record_decline(session: AsyncSession, invite_id, actor_id: Optional[str] = None) -> BidInvite:
    invite = await get_invite(session, invite_id, for_update=True)
    if invite.status == "declined":
        return invite
    if invite.status == "submitted":
        raise InvalidTransitionError(
            "A submitted bid cannot be declined", {"status": invite.status}
        )

    before = snapshot(invite)
    invite.status = "declined"
    invite.declined_at = utcnow()
    await session.flush()

    await create_audit_log(
        session,
        tenant_id=invite.tenant_id,
        actor_id=actor_id,
        action="decline",
        entity_type="bid_invite",
        entity_id=invite.id,
        before_state=before,
        after_state=snapshot(invite),
    )
    logger.info("bid_invite_declined", bid_invite_id=str(invite.id))
    return invite


def mark_submitted(invite: BidInvite) -> bool:
    """
    Advance the invite for a new submission. Returns True when this re-opens
    a declined invite. declined_at is kept as history.
    """
    reopened = invite.status == "declined"
    invite.status = "submitted"
    invite.submitted_at = utcnow()
    return reopened


async def set_require_account(
    session: AsyncSession, invite_id, enforced: bool, actor_id: Optional[str] = None
) -> BidInvite:
    invite = await get_invite(session, invite_id, for_update=True)
    live = await access_service.counts(session, invite.id)
    if live.live_grant_count == 0:
        raise NoAccessIssuedError(
            "No access has been issued for this invite yet",
            {"bid_invite_id": str(invite.id)},
        )

    if invite.require_account != enforced:
        invite.require_account = enforced
        await session.flush()
        await create_audit_log(
            session,
            tenant_id=invite.tenant_id,
            actor_id=actor_id,
            action="require_account",
            entity_type="bid_invite",
            entity_id=invite.id,
            before_state={"require_account": not enforced},
            after_state={"require_account": enforced},
        )
    logger.info("bid_invite_require_account", bid_invite_id=str(invite.id), enforced=enforced)
    return invite


async def list_invites(session: AsyncSession, package_id) -> list[tuple[BidInvite, AccessCounts]]:
    result = await session.execute(
        select(BidInvite)
        .where(BidInvite.bid_package_id == as_uuid(package_id, "bid_package_id"))
        .order_by(BidInvite.created_at.asc())
    )
    invites = list(result.scalars().all())
    counts = await access_service.counts_for_invites(session, [i.id for i in invites])
    return [(i, counts[str(i.id)]) for i in invites]
