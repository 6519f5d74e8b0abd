"""
Submission ledger: versioned bids per invite.

Submit() holds the invite row lock (SELECT ... FOR UPDATE) for the whole
read-max / demote / insert sequence, so versions come out 1..N with no gaps
and only one row per invite is ever current. The unique (invite, version)
constraint and the partial unique index on is_current back this at the
database. A violation rolls back only the SAVEPOINT and surfaces as
ConcurrencyConflictError, so the route can retry on the same session.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

from dataclasses import dataclass, fields
from datetime import date
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.errors import ConcurrencyConflictError, InvalidTransitionError, NotFoundError, ValidationError
from api.models.bid_invite import BidInvite
from api.models.bid_package import BidPackage, BIDDING_CLOSED_STATUSES
from api.models.bid_submission import BidSubmission
from api.services import invite_service
from api.services.audit_service import create_audit_log, snapshot
from api.utils import as_uuid

logger = structlog.get_logger()


@dataclass
class SubmissionPayload:
    total_cents: Optional[int] = None
    currency: str = "usd"
    valid_until: Optional[date] = None
    lead_time_days: Optional[int] = None
    duration_days: Optional[int] = None
    start_available_on: Optional[date] = None
    exclusions: Optional[str] = None
    clarifications: Optional[str] = None
    notes: Optional[str] = None
    submitted_by_name: Optional[str] = None
    submitted_by_email: Optional[str] = None

    def validate(self) -> None:
        if self.total_cents is not None and self.total_cents < 0:
            raise ValidationError("total_cents cannot be negative")
        for name in ("lead_time_days", "duration_days"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValidationError(f"{name} cannot be negative")
        if not self.currency or len(self.currency) != 3:
            raise ValidationError("currency must be a 3-letter code")

    def as_columns(self) -> dict:
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["currency"] = self.currency.lower()
        return values


async def submit(
    session: AsyncSession,
    invite_id,
    payload: SubmissionPayload,
    actor_id: Optional[str] = None,
) -> BidSubmission:
    payload.validate()

    # Serializes concurrent submissions for this invite
    invite = await invite_service.get_invite(session, invite_id, for_update=True)

    # FOR SHARE queues behind award()'s claim on the package row, so a
    # submit racing an award re-reads the package and sees "awarded"
    package_result = await session.execute(
        select(BidPackage.status)
        .where(BidPackage.id == invite.bid_package_id)
        .with_for_update(read=True)
    )
    package_status = package_result.scalar_one()
    if package_status in BIDDING_CLOSED_STATUSES:
        raise InvalidTransitionError(
            f"Bidding is {package_status} for this package",
            {"status": package_status},
        )

    max_result = await session.execute(
        select(func.coalesce(func.max(BidSubmission.version), 0)).where(
            BidSubmission.bid_invite_id == invite.id
        )
    )
    version = int(max_result.scalar() or 0) + 1

    try:
        async with session.begin_nested():
            # Demote first so the partial unique index never sees two current rows
            await session.execute(
                update(BidSubmission)
                .where(
                    BidSubmission.bid_invite_id == invite.id,
                    BidSubmission.is_current.is_(True),
                    BidSubmission.is_awarded.is_(False),
                )
                .values(is_current=False, status="revised")
                .execution_options(synchronize_session="fetch")
            )

            submission = BidSubmission(
                tenant_id=invite.tenant_id,
                bid_invite_id=invite.id,
                version=version,
                status="submitted",
                is_current=True,
                **payload.as_columns(),
            )
            session.add(submission)
            await session.flush()
    except IntegrityError as exc:
        logger.warning("bid_submission_conflict", bid_invite_id=str(invite.id), version=version)
        raise ConcurrencyConflictError(
            "Another submission for this invite was recorded at the same time"
        ) from exc

    before = {"status": invite.status}
    reopened = invite_service.mark_submitted(invite)
    await session.flush()

    await create_audit_log(
        session,
        tenant_id=invite.tenant_id,
        actor_id=actor_id,
        action="reopen_submit" if reopened else "submit",
        entity_type="bid_submission",
        entity_id=submission.id,
        before_state=before,
        after_state=snapshot(submission),
        extra_metadata={"bid_invite_id": str(invite.id), "version": version},
    )

    if reopened:
        logger.info("bid_invite_reopened", bid_invite_id=str(invite.id), version=version)
    logger.info(
        "bid_submitted",
        bid_invite_id=str(invite.id),
        submission_id=str(submission.id),
        version=version,
        total_cents=submission.total_cents,
    )
    return submission


async def get_submission(session: AsyncSession, submission_id) -> BidSubmission:
    result = await session.execute(
        select(BidSubmission).where(BidSubmission.id == as_uuid(submission_id, "submission_id"))
    )
    submission = result.scalar_one_or_none()
    if not submission:
        raise NotFoundError("Bid submission not found", {"submission_id": str(submission_id)})
    return submission


async def list_current_by_package(session: AsyncSession, package_id) -> list[BidSubmission]:
    """The award candidate set: one current submission per invite that has one."""
    result = await session.execute(
        select(BidSubmission)
        .join(BidInvite, BidInvite.id == BidSubmission.bid_invite_id)
        .where(
            BidInvite.bid_package_id == as_uuid(package_id, "bid_package_id"),
            BidSubmission.is_current.is_(True),
        )
        .order_by(BidSubmission.total_cents.asc().nulls_last(), BidSubmission.submitted_at.asc())
    )
    return list(result.scalars().all())


async def list_history(session: AsyncSession, invite_id) -> list[BidSubmission]:
    result = await session.execute(
        select(BidSubmission)
        .where(BidSubmission.bid_invite_id == as_uuid(invite_id, "bid_invite_id"))
        .order_by(BidSubmission.version.desc())
    )
    return list(result.scalars().all())
