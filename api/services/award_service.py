"""
Award coordinator: at most one awarded submission per bid package.

Exclusivity is a compare-and-set on the package row:

    UPDATE bid_packages SET status='awarded'
     WHERE id=:id AND status NOT IN ('awarded','cancelled')

Whoever gets rowcount 1 owns the award; everyone else gets
AlreadyAwardedError naming the winner. The submission flag and the
bid_awards row (unique per package) are written in the same transaction.

The downstream commitment is requested only after that transaction is
committed (see request_commitment), so its failure can never un-award.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.errors import (
    AlreadyAwardedError,
    InvalidTransitionError,
    MissingTotalError,
    NotCurrentError,
    NotFoundError,
)
from api.models.bid_award import BidAward
from api.models.bid_invite import BidInvite
from api.models.bid_package import BidPackage
from api.models.bid_submission import BidSubmission
from api.services import commitment_service
from api.services.audit_service import create_audit_log
from api.services.notification_service import send_notification
from api.utils import as_uuid, as_optional_uuid

logger = structlog.get_logger()


@dataclass
class AwardResult:
    award: BidAward
    package: BidPackage
    submission: BidSubmission
    invite: BidInvite
    commitment_created: bool = False
    commitment_error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return not self.commitment_created


async def get_award(session: AsyncSession, package_id) -> Optional[BidAward]:
    result = await session.execute(
        select(BidAward).where(BidAward.bid_package_id == as_uuid(package_id, "bid_package_id"))
    )
    return result.scalar_one_or_none()


async def _winner_id(session: AsyncSession, package_id) -> Optional[str]:
    award = await get_award(session, package_id)
    if award:
        return str(award.awarded_submission_id)
    # Fallback for awards recorded without a bid_awards row
    result = await session.execute(
        select(BidSubmission.id)
        .join(BidInvite, BidInvite.id == BidSubmission.bid_invite_id)
        .where(BidInvite.bid_package_id == package_id, BidSubmission.is_awarded.is_(True))
    )
    winner = result.scalars().first()
    return str(winner) if winner else None


async def _already_awarded(session: AsyncSession, package_id) -> AlreadyAwardedError:
    return AlreadyAwardedError(str(package_id), await _winner_id(session, package_id))


async def award(
    session: AsyncSession,
    package_id,
    submission_id,
    actor_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> AwardResult:
    package_id = as_uuid(package_id, "bid_package_id")
    submission_id = as_uuid(submission_id, "submission_id")

    package = (
        await session.execute(select(BidPackage).where(BidPackage.id == package_id))
    ).scalar_one_or_none()
    if not package:
        raise NotFoundError("Bid package not found", {"bid_package_id": str(package_id)})
    if package.status == "awarded":
        raise await _already_awarded(session, package_id)
    if package.status == "cancelled":
        raise InvalidTransitionError("A cancelled bid package cannot be awarded")

    row = (
        await session.execute(
            select(BidSubmission, BidInvite)
            .join(BidInvite, BidInvite.id == BidSubmission.bid_invite_id)
            .where(BidSubmission.id == submission_id, BidInvite.bid_package_id == package_id)
        )
    ).one_or_none()
    if not row:
        raise NotFoundError(
            "Submission not found on this bid package", {"submission_id": str(submission_id)}
        )
    submission, invite = row
    if not submission.is_current:
        raise NotCurrentError(
            "Only the current version of a bid can be awarded",
            {"submission_id": str(submission.id), "version": submission.version},
        )
    if submission.total_cents is None:
        raise MissingTotalError(
            "This bid has no total and cannot be awarded",
            {"submission_id": str(submission.id)},
        )

    previous_status = package.status

    # Compare-and-set: exactly one caller flips the package
    claimed = await session.execute(
        update(BidPackage)
        .where(
            BidPackage.id == package_id,
            BidPackage.status.notin_(("awarded", "cancelled")),
        )
        .values(status="awarded")
        .execution_options(synchronize_session="fetch")
    )
    if claimed.rowcount != 1:
        await session.refresh(package)
        logger.info("bid_award_lost_race", bid_package_id=str(package_id))
        if package.status == "cancelled":
            raise InvalidTransitionError("A cancelled bid package cannot be awarded")
        raise await _already_awarded(session, package_id)

    flagged = await session.execute(
        update(BidSubmission)
        .where(BidSubmission.id == submission.id, BidSubmission.is_current.is_(True))
        .values(is_awarded=True)
        .execution_options(synchronize_session="fetch")
    )
    if flagged.rowcount != 1:
        # revised between the check and the claim; the caller's rollback undoes the claim
        raise NotCurrentError(
            "The bid was revised before it could be awarded",
            {"submission_id": str(submission.id)},
        )

    record = BidAward(
        tenant_id=package.tenant_id,
        bid_package_id=package.id,
        awarded_submission_id=submission.id,
        awarded_by=as_optional_uuid(actor_id, "actor_id"),
        notes=notes,
    )
    session.add(record)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise AlreadyAwardedError(str(package_id), None) from exc

    await create_audit_log(
        session,
        tenant_id=package.tenant_id,
        actor_id=actor_id,
        action="award",
        entity_type="bid_package",
        entity_id=package.id,
        before_state={"status": previous_status},
        after_state={"status": "awarded", "awarded_submission_id": str(submission.id)},
        extra_metadata={"total_cents": submission.total_cents, "bid_invite_id": str(invite.id)},
    )
    logger.info(
        "bid_package_awarded",
        bid_package_id=str(package.id),
        submission_id=str(submission.id),
        total_cents=submission.total_cents,
    )
    return AwardResult(award=record, package=package, submission=submission, invite=invite)


async def request_commitment(session: AsyncSession, result: AwardResult) -> AwardResult:
    """
    Run after the award is committed. Records the commitment id on success,
    otherwise leaves the award in place and marks the result degraded.
    Also notifies the winning vendor.
    """
    outcome = await commitment_service.create_commitment(
        tenant_id=str(result.package.tenant_id),
        project_id=str(result.package.project_id),
        bid_package_id=str(result.package.id),
        submission_id=str(result.submission.id),
        company_id=str(result.invite.company_id) if result.invite.company_id else None,
        title=result.package.title,
        total_cents=result.submission.total_cents,
        currency=result.submission.currency,
    )
    result.commitment_created = outcome.success
    result.commitment_error = outcome.error

    if outcome.success and outcome.commitment_id:
        result.award.awarded_commitment_id = outcome.commitment_id
        session.add(result.award)
        await session.flush()
    elif not outcome.success:
        logger.warning(
            "bid_award_degraded",
            bid_package_id=str(result.package.id),
            error=outcome.error,
        )

    await send_notification(
        "bid_awarded",
        result.invite.invite_email,
        {
            "package_title": result.package.title,
            "currency": result.submission.currency.upper(),
            "amount_cents": result.submission.total_cents,
        },
    )
    return result
