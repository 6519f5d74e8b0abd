"""
Bid package controller: package lifecycle and addenda.

Addendum numbers are assigned under the package row lock, the same
discipline as submission versioning, so concurrent issuance never produces
duplicate or skipped numbers.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.clock import as_naive_utc
from api.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from api.models.bid_invite import BidInvite
from api.models.bid_package import (
    BidAddendum,
    BidAddendumAcknowledgement,
    BidPackage,
    PACKAGE_STATUSES,
    PACKAGE_TRANSITIONS,
)
from api.services.audit_service import create_audit_log, snapshot
from api.services.notification_service import send_notification
from api.utils import as_uuid, as_optional_uuid

logger = structlog.get_logger()

EDITABLE_FIELDS = ("title", "trade", "scope", "instructions", "due_at", "status")
ADDENDUM_NOTIFY_STATUSES = ("sent", "viewed", "submitted")


@dataclass
class AddendumResult:
    addendum: BidAddendum
    notified: int = 0
    notify_failed: int = 0


async def get_package(
    session: AsyncSession, package_id, tenant_id=None, for_update: bool = False
) -> BidPackage:
    q = select(BidPackage).where(BidPackage.id == as_uuid(package_id, "bid_package_id"))
    if tenant_id is not None:
        q = q.where(BidPackage.tenant_id == as_uuid(tenant_id, "tenant_id"))
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q)
    package = result.scalar_one_or_none()
    if not package:
        raise NotFoundError("Bid package not found", {"bid_package_id": str(package_id)})
    return package


async def create_package(
    session: AsyncSession,
    tenant_id,
    project_id,
    title: str,
    trade: Optional[str] = None,
    scope: Optional[str] = None,
    instructions: Optional[str] = None,
    due_at: Optional[datetime] = None,
    actor_id: Optional[str] = None,
) -> BidPackage:
    if not title or not title.strip():
        raise ValidationError("title is required")

    package = BidPackage(
        tenant_id=as_uuid(tenant_id, "tenant_id"),
        project_id=as_uuid(project_id, "project_id"),
        title=title.strip(),
        trade=trade,
        scope=scope,
        instructions=instructions,
        due_at=as_naive_utc(due_at),
        status="draft",
        created_by=as_optional_uuid(actor_id, "actor_id"),
    )
    session.add(package)
    await session.flush()

    await create_audit_log(
        session,
        tenant_id=package.tenant_id,
        actor_id=actor_id,
        action="insert",
        entity_type="bid_package",
        entity_id=package.id,
        after_state=snapshot(package),
    )
    logger.info("bid_package_created", bid_package_id=str(package.id), project_id=str(project_id))
    return package


async def update_package(
    session: AsyncSession,
    package_id,
    changes: dict,
    tenant_id=None,
    actor_id: Optional[str] = None,
) -> BidPackage:
    """
    Apply field edits. Status moves follow PACKAGE_TRANSITIONS; "awarded" is
    reachable only through the award path and is never left.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError("Unknown bid package fields", {"fields": sorted(unknown)})

    package = await get_package(session, package_id, tenant_id=tenant_id, for_update=True)
    if package.status == "awarded":
        raise InvalidTransitionError("An awarded bid package cannot be edited")

    new_status = changes.get("status")
    if new_status is not None and new_status != package.status:
        if new_status not in PACKAGE_STATUSES:
            raise ValidationError(f"Unknown status '{new_status}'")
        if new_status not in PACKAGE_TRANSITIONS[package.status]:
            raise InvalidTransitionError(
                f"Cannot move bid package from {package.status} to {new_status}",
                {"from": package.status, "to": new_status},
            )

    if "due_at" in changes:
        changes = {**changes, "due_at": as_naive_utc(changes["due_at"])}
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("title cannot be empty")

    before = snapshot(package)
    for key, value in changes.items():
        setattr(package, key, value.strip() if key == "title" else value)
    await session.flush()

    await create_audit_log(
        session,
        tenant_id=package.tenant_id,
        actor_id=actor_id,
        action="update",
        entity_type="bid_package",
        entity_id=package.id,
        before_state=before,
        after_state=snapshot(package),
    )
    logger.info("bid_package_updated", bid_package_id=str(package.id), fields=sorted(changes))
    return package


async def list_packages(
    session: AsyncSession,
    tenant_id,
    project_id=None,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[BidPackage], int]:
    q = select(BidPackage).where(BidPackage.tenant_id == as_uuid(tenant_id, "tenant_id"))
    if project_id is not None:
        q = q.where(BidPackage.project_id == as_uuid(project_id, "project_id"))
    if status:
        q = q.where(BidPackage.status == status)

    total = (await session.execute(select(func.count()).select_from(q.subquery()))).scalar() or 0
    result = await session.execute(
        q.order_by(BidPackage.due_at.asc().nulls_last(), BidPackage.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), int(total)


# ---------- addenda ----------

async def issue_addendum(
    session: AsyncSession,
    package_id,
    title: Optional[str] = None,
    message: Optional[str] = None,
    notify: bool = False,
    tenant_id=None,
    actor_id: Optional[str] = None,
) -> AddendumResult:
    if not (title or message):
        raise ValidationError("An addendum needs a title or a message")

    # Package row lock serializes numbering
    package = await get_package(session, package_id, tenant_id=tenant_id, for_update=True)
    if package.status in ("awarded", "cancelled"):
        raise InvalidTransitionError(
            f"Cannot issue an addendum on a {package.status} bid package"
        )

    max_result = await session.execute(
        select(func.coalesce(func.max(BidAddendum.number), 0)).where(
            BidAddendum.bid_package_id == package.id
        )
    )
    number = int(max_result.scalar() or 0) + 1

    addendum = BidAddendum(
        tenant_id=package.tenant_id,
        bid_package_id=package.id,
        number=number,
        title=title,
        message=message,
        created_by=as_optional_uuid(actor_id, "actor_id"),
    )
    try:
        async with session.begin_nested():
            session.add(addendum)
            await session.flush()
    except IntegrityError as exc:
        logger.warning("bid_addendum_conflict", bid_package_id=str(package.id), number=number)
        raise ConcurrencyConflictError(
            "Another addendum was issued at the same time; retry"
        ) from exc

    await create_audit_log(
        session,
        tenant_id=package.tenant_id,
        actor_id=actor_id,
        action="insert",
        entity_type="bid_addendum",
        entity_id=addendum.id,
        after_state=snapshot(addendum),
    )
    logger.info("bid_addendum_issued", bid_package_id=str(package.id), number=number)

    result = AddendumResult(addendum=addendum)
    if notify:
        invites = await session.execute(
            select(BidInvite).where(
                BidInvite.bid_package_id == package.id,
                BidInvite.status.in_(ADDENDUM_NOTIFY_STATUSES),
                BidInvite.invite_email.isnot(None),
            )
        )
        context = {
            "number": number,
            "package_title": package.title,
            "addendum_title": title or "",
            "addendum_message": message or "",
        }
        for invite in invites.scalars().all():
            if await send_notification("bid_addendum_issued", invite.invite_email, context):
                result.notified += 1
            else:
                result.notify_failed += 1
        logger.info(
            "bid_addendum_notified",
            bid_addendum_id=str(addendum.id),
            notified=result.notified,
            failed=result.notify_failed,
        )
    return result


async def list_addenda(session: AsyncSession, package_id) -> list[BidAddendum]:
    result = await session.execute(
        select(BidAddendum)
        .where(BidAddendum.bid_package_id == as_uuid(package_id, "bid_package_id"))
        .order_by(BidAddendum.number.asc())
    )
    return list(result.scalars().all())


async def acknowledge_addendum(
    session: AsyncSession, invite: BidInvite, addendum_id
) -> BidAddendumAcknowledgement:
    """Idempotent per (addendum, invite)."""
    addendum = (
        await session.execute(
            select(BidAddendum).where(
                BidAddendum.id == as_uuid(addendum_id, "addendum_id"),
                BidAddendum.bid_package_id == invite.bid_package_id,
            )
        )
    ).scalar_one_or_none()
    if not addendum:
        raise NotFoundError("Addendum not found", {"addendum_id": str(addendum_id)})

    existing = (
        await session.execute(
            select(BidAddendumAcknowledgement).where(
                BidAddendumAcknowledgement.bid_addendum_id == addendum.id,
                BidAddendumAcknowledgement.bid_invite_id == invite.id,
            )
        )
    ).scalar_one_or_none()
    if existing:
        return existing

    ack = BidAddendumAcknowledgement(
        tenant_id=invite.tenant_id,
        bid_addendum_id=addendum.id,
        bid_invite_id=invite.id,
    )
    session.add(ack)
    await session.flush()
    logger.info("bid_addendum_acknowledged", bid_addendum_id=str(addendum.id), bid_invite_id=str(invite.id))
    return ack


async def acknowledged_addendum_ids(session: AsyncSession, invite_id) -> set[str]:
    result = await session.execute(
        select(BidAddendumAcknowledgement.bid_addendum_id).where(
            BidAddendumAcknowledgement.bid_invite_id == as_uuid(invite_id, "bid_invite_id")
        )
    )
    return {str(i) for i in result.scalars().all()}
