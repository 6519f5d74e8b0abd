"""
Access grant store: link tokens and linked vendor accounts per invite.

Both channels live in bid_access_grants and share one transition routine:
pause (active→paused), resume (paused→active), revoke (active|paused→revoked,
terminal). Each transition is a single UPDATE over the matching rows, so it
is atomic and commutes with transitions on the other channel. Invite-level
counters are always computed from the rows, never stored.

A link may also carry a bcrypt-hashed PIN. verify_pin() trades a correct PIN
for a short-lived signed pin_session that verify() then accepts.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from jose import jwt, JWTError
from passlib.context import CryptContext
import structlog

from api.clock import as_naive_utc, utcnow
from api.config import settings
from api.errors import AccessDeniedError, InvalidTransitionError, NotFoundError, ValidationError
from api.models.access_grant import AccessGrant, CHANNELS
from api.models.bid_invite import BidInvite
from api.services.audit_service import create_audit_log
from api.utils import as_uuid, as_optional_uuid

logger = structlog.get_logger()

TOKEN_BYTES = 32  # 256 bits
PIN_PATTERN = re.compile(r"^\d{4,8}$")
PIN_SESSION_TYPE = "bid_pin"
PIN_SESSION_ALGORITHM = "HS256"

pin_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)


@dataclass
class AccessCounts:
    active_access_count: int = 0
    paused_access_count: int = 0
    access_total: int = 0
    linked_account_count: int = 0
    linked_active_account_count: int = 0
    linked_paused_account_count: int = 0

    def as_dict(self) -> dict:
        return asdict(self)

    @property
    def live_grant_count(self) -> int:
        return (
            self.active_access_count
            + self.paused_access_count
            + self.linked_account_count
        )


@dataclass
class IssuedLink:
    grant: AccessGrant
    token: str
    url: str


@dataclass
class VerifiedAccess:
    invite: BidInvite
    grant: AccessGrant
    channel: str
    grant_state: str
    user_id: Optional[str] = None


@dataclass
class PinCheck:
    valid: bool
    attempts_remaining: Optional[int] = None
    locked_until: Optional[datetime] = None
    pin_session: Optional[str] = None
    session_expires_at: Optional[datetime] = None


# ---------- tokens ----------

def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(token: str) -> str:
    """HMAC-SHA256 of the token; only the hash is stored."""
    if not settings.BID_PORTAL_SECRET:
        raise RuntimeError("BID_PORTAL_SECRET is not configured")
    return hmac.new(
        settings.BID_PORTAL_SECRET.encode(), token.encode(), hashlib.sha256
    ).hexdigest()


def portal_url(token: str) -> str:
    return f"{settings.portal_base_url}/b/{token}"


def _check_pin_format(pin: str) -> None:
    if not PIN_PATTERN.match(pin or ""):
        raise ValidationError("PIN must be 4 to 8 digits")


def _apply_pin(grant: AccessGrant, pin: Optional[str]) -> None:
    grant.pin_hash = pin_context.hash(pin) if pin is not None else None
    grant.pin_required = pin is not None
    grant.pin_attempts = 0
    grant.pin_locked_until = None


def _check_channel(channel: str) -> None:
    if channel not in CHANNELS:
        raise ValidationError(
            f"Unknown access channel '{channel}'", {"allowed": list(CHANNELS)}
        )


async def _get_invite(session: AsyncSession, invite_id) -> BidInvite:
    result = await session.execute(
        select(BidInvite).where(BidInvite.id == as_uuid(invite_id, "bid_invite_id"))
    )
    invite = result.scalar_one_or_none()
    if not invite:
        raise NotFoundError("Bid invite not found", {"bid_invite_id": str(invite_id)})
    return invite


# ---------- issuing ----------

async def issue_link_grant(
    session: AsyncSession,
    invite_id,
    created_by: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    max_access_count: Optional[int] = None,
    mark_sent: bool = True,
    pin: Optional[str] = None,
) -> IssuedLink:
    """
    Mint a new active link grant. Earlier links are left as they are.

    A draft invite moves to "sent" when mark_sent is set, since the owner is
    handing the link over out of band.
    """
    if max_access_count is not None and max_access_count < 1:
        raise ValidationError("max_access_count must be at least 1")
    if pin is not None:
        _check_pin_format(pin)

    invite = await _get_invite(session, invite_id)
    token = generate_token()
    grant = AccessGrant(
        tenant_id=invite.tenant_id,
        bid_invite_id=invite.id,
        channel="link",
        state="active",
        token_hash=hash_token(token),
        expires_at=as_naive_utc(expires_at),
        max_access_count=max_access_count,
        access_count=0,
        created_by=as_optional_uuid(created_by, "created_by"),
    )
    session.add(grant)
    if pin is not None:
        _apply_pin(grant, pin)

    if mark_sent and invite.status == "draft":
        invite.status = "sent"
        invite.sent_at = utcnow()

    await session.flush()
    logger.info(
        "access_link_issued",
        bid_invite_id=str(invite.id),
        grant_id=str(grant.id),
        pin_required=grant.pin_required,
    )
    return IssuedLink(grant=grant, token=token, url=portal_url(token))


async def link_account_grant(
    session: AsyncSession,
    invite_id,
    user_id,
    created_by: Optional[str] = None,
) -> AccessGrant:
    """Tie an authenticated vendor account to the invite. Idempotent per user."""
    invite = await _get_invite(session, invite_id)
    user_id = as_uuid(user_id, "user_id")
    created_by = as_optional_uuid(created_by, "created_by")

    existing = await session.execute(
        select(AccessGrant).where(
            AccessGrant.bid_invite_id == invite.id,
            AccessGrant.channel == "account",
            AccessGrant.linked_user_id == user_id,
            AccessGrant.state != "revoked",
        )
    )
    grant = existing.scalar_one_or_none()
    if grant:
        return grant

    grant = AccessGrant(
        tenant_id=invite.tenant_id,
        bid_invite_id=invite.id,
        channel="account",
        state="active",
        linked_user_id=user_id,
        created_by=created_by or user_id,
    )
    session.add(grant)
    await session.flush()

    await create_audit_log(
        session,
        tenant_id=invite.tenant_id,
        actor_id=created_by or user_id,
        action="link_account",
        entity_type="bid_access_grant",
        entity_id=grant.id,
        after_state={"bid_invite_id": str(invite.id), "linked_user_id": str(user_id)},
    )
    logger.info("access_account_linked", bid_invite_id=str(invite.id), user_id=str(user_id))
    return grant


# ---------- channel transitions ----------

_TRANSITIONS = {
    "pause": (("active",), "paused"),
    "resume": (("paused",), "active"),
    "revoke": (("active", "paused"), "revoked"),
}


async def _transition_channel(
    session: AsyncSession,
    invite_id,
    channel: str,
    action: str,
    actor_id: Optional[str] = None,
) -> int:
    _check_channel(channel)
    invite = await _get_invite(session, invite_id)
    from_states, to_state = _TRANSITIONS[action]

    now = utcnow()
    values: dict = {"state": to_state}
    if to_state == "paused":
        values["paused_at"] = now
    elif to_state == "active":
        values["paused_at"] = None
    else:
        values["revoked_at"] = now

    result = await session.execute(
        update(AccessGrant)
        .where(
            AccessGrant.bid_invite_id == invite.id,
            AccessGrant.channel == channel,
            AccessGrant.state.in_(from_states),
        )
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    changed = result.rowcount or 0

    if changed:
        await create_audit_log(
            session,
            tenant_id=invite.tenant_id,
            actor_id=actor_id,
            action=f"access_{action}",
            entity_type="bid_invite",
            entity_id=invite.id,
            extra_metadata={"channel": channel, "grants": changed},
        )
    logger.info(
        f"access_channel_{to_state}",
        bid_invite_id=str(invite.id),
        channel=channel,
        grants=changed,
    )
    return changed


async def pause_channel(session: AsyncSession, invite_id, channel: str, actor_id=None) -> int:
    """active → paused for every grant on the channel. No-op if none are active."""
    return await _transition_channel(session, invite_id, channel, "pause", actor_id)


async def resume_channel(session: AsyncSession, invite_id, channel: str, actor_id=None) -> int:
    return await _transition_channel(session, invite_id, channel, "resume", actor_id)


async def revoke_channel(session: AsyncSession, invite_id, channel: str, actor_id=None) -> int:
    """Terminal; revoked grants never come back."""
    return await _transition_channel(session, invite_id, channel, "revoke", actor_id)


# ---------- aggregation ----------

def _fold_counts(rows: Iterable) -> dict:
    counts: dict = {}
    for invite_id, channel, state, n in rows:
        c = counts.setdefault(str(invite_id), AccessCounts())
        n = int(n or 0)
        if channel == "link":
            c.access_total += n
            if state == "active":
                c.active_access_count += n
            elif state == "paused":
                c.paused_access_count += n
        elif channel == "account":
            if state == "active":
                c.linked_active_account_count += n
                c.linked_account_count += n
            elif state == "paused":
                c.linked_paused_account_count += n
                c.linked_account_count += n
    return counts


async def counts_for_invites(session: AsyncSession, invite_ids: list) -> dict[str, AccessCounts]:
    """Batch form of counts(); keyed by str(invite_id)."""
    ids = [as_uuid(i, "bid_invite_id") for i in invite_ids]
    if not ids:
        return {}
    result = await session.execute(
        select(
            AccessGrant.bid_invite_id,
            AccessGrant.channel,
            AccessGrant.state,
            func.count(AccessGrant.id),
        )
        .where(AccessGrant.bid_invite_id.in_(ids))
        .group_by(AccessGrant.bid_invite_id, AccessGrant.channel, AccessGrant.state)
    )
    folded = _fold_counts(result.all())
    return {str(i): folded.get(str(i), AccessCounts()) for i in ids}


async def counts(session: AsyncSession, invite_id) -> AccessCounts:
    """
    access_total counts every link ever issued, revoked included; the other
    counters cover non-revoked grants only.
    """
    invite_id = as_uuid(invite_id, "bid_invite_id")
    return (await counts_for_invites(session, [invite_id]))[str(invite_id)]


# ---------- verification ----------

async def _account_grant_for(session: AsyncSession, invite_id, user_id) -> Optional[AccessGrant]:
    result = await session.execute(
        select(AccessGrant)
        .where(
            AccessGrant.bid_invite_id == invite_id,
            AccessGrant.channel == "account",
            AccessGrant.linked_user_id == user_id,
        )
        .order_by(AccessGrant.created_at.desc())
    )
    grants = list(result.scalars().all())
    # a live grant wins over older revoked rows
    for grant in grants:
        if grant.state != "revoked":
            return grant
    return grants[0] if grants else None


async def verify(
    session: AsyncSession,
    token: str,
    user_id: Optional[str] = None,
    record_access: bool = False,
    enforce_account: bool = True,
    pin_session: Optional[str] = None,
) -> VerifiedAccess:
    """
    Resolve a link token (and optionally the signed-in vendor) to an invite.

    Raises AccessDeniedError with reason not_found / paused / revoked /
    pin_required / account_required. A signed-in user with a live account
    grant is checked on the account channel only; otherwise the link grant
    decides, and a bare link is refused when the invite requires an account. The
    account-linking step passes enforce_account=False, since linking is how
    a vendor satisfies that requirement.

    A PIN-protected link also needs the pin_session issued by verify_pin().
    """
    result = await session.execute(
        select(AccessGrant).where(
            AccessGrant.token_hash == hash_token(token),
            AccessGrant.channel == "link",
        )
    )
    link = result.scalar_one_or_none()
    if not link:
        raise AccessDeniedError("not_found")

    invite = await _get_invite(session, link.bid_invite_id)

    if user_id is not None:
        account = await _account_grant_for(session, invite.id, as_uuid(user_id, "user_id"))
        if account is not None:
            if account.state != "active":
                raise AccessDeniedError(account.state)
            logger.info("access_verified", bid_invite_id=str(invite.id), channel="account")
            return VerifiedAccess(
                invite=invite,
                grant=account,
                channel="account",
                grant_state=account.state,
                user_id=str(user_id),
            )

    if link.state != "active":
        raise AccessDeniedError(link.state)

    now = utcnow()
    if link.expires_at is not None and link.expires_at < now:
        raise AccessDeniedError("not_found")
    if link.max_access_count is not None and link.access_count >= link.max_access_count:
        raise AccessDeniedError("not_found")

    if link.pin_required and not pin_session_valid(link, pin_session):
        raise AccessDeniedError("pin_required")

    if invite.require_account and enforce_account:
        raise AccessDeniedError("account_required")

    if record_access:
        await session.execute(
            update(AccessGrant)
            .where(
                AccessGrant.id == link.id,
                or_(
                    AccessGrant.max_access_count.is_(None),
                    AccessGrant.access_count < AccessGrant.max_access_count,
                ),
            )
            .values(access_count=AccessGrant.access_count + 1, last_accessed_at=now)
            .execution_options(synchronize_session="fetch")
        )

    logger.info("access_verified", bid_invite_id=str(invite.id), channel="link")
    return VerifiedAccess(
        invite=invite,
        grant=link,
        channel="link",
        grant_state=link.state,
        user_id=str(user_id) if user_id is not None else None,
    )


# ---------- link PINs ----------

async def _get_link_grant(session: AsyncSession, invite_id, grant_id) -> AccessGrant:
    result = await session.execute(
        select(AccessGrant).where(
            AccessGrant.id == as_uuid(grant_id, "grant_id"),
            AccessGrant.bid_invite_id == as_uuid(invite_id, "bid_invite_id"),
            AccessGrant.channel == "link",
        )
    )
    grant = result.scalar_one_or_none()
    if not grant:
        raise NotFoundError("Bid link not found", {"grant_id": str(grant_id)})
    return grant


async def set_link_pin(
    session: AsyncSession, invite_id, grant_id, pin: str, actor_id: Optional[str] = None
) -> AccessGrant:
    """Require a PIN on one link. Replacing a PIN clears any lockout and ends open PIN sessions."""
    _check_pin_format(pin)
    grant = await _get_link_grant(session, invite_id, grant_id)
    if grant.state == "revoked":
        raise InvalidTransitionError("A revoked link cannot be given a PIN")

    _apply_pin(grant, pin)
    await session.flush()
    await create_audit_log(
        session,
        tenant_id=grant.tenant_id,
        actor_id=actor_id,
        action="set_link_pin",
        entity_type="bid_access_grant",
        entity_id=grant.id,
        after_state={"pin_required": True},
    )
    logger.info("access_link_pin_set", grant_id=str(grant.id))
    return grant


async def clear_link_pin(
    session: AsyncSession, invite_id, grant_id, actor_id: Optional[str] = None
) -> AccessGrant:
    grant = await _get_link_grant(session, invite_id, grant_id)
    if not grant.pin_required:
        return grant

    _apply_pin(grant, None)
    await session.flush()
    await create_audit_log(
        session,
        tenant_id=grant.tenant_id,
        actor_id=actor_id,
        action="clear_link_pin",
        entity_type="bid_access_grant",
        entity_id=grant.id,
        before_state={"pin_required": True},
        after_state={"pin_required": False},
    )
    logger.info("access_link_pin_cleared", grant_id=str(grant.id))
    return grant


def _pin_fingerprint(grant: AccessGrant) -> str:
    # ties a PIN session to the PIN that was current when it was issued
    return hash_token(grant.pin_hash or "")[:16]


def issue_pin_session(grant: AccessGrant) -> tuple[str, datetime]:
    expires_at = utcnow() + timedelta(minutes=settings.PIN_SESSION_TTL_MINUTES)
    claims = {
        "sub": str(grant.id),
        "type": PIN_SESSION_TYPE,
        "pin": _pin_fingerprint(grant),
        "exp": expires_at,
    }
    token = jwt.encode(claims, settings.BID_PORTAL_SECRET, algorithm=PIN_SESSION_ALGORITHM)
    return token, expires_at


def pin_session_valid(grant: AccessGrant, pin_session: Optional[str]) -> bool:
    if not pin_session:
        return False
    try:
        claims = jwt.decode(
            pin_session, settings.BID_PORTAL_SECRET, algorithms=[PIN_SESSION_ALGORITHM]
        )
    except JWTError as e:
        logger.info("access_pin_session_invalid", grant_id=str(grant.id), error=str(e))
        return False
    return (
        claims.get("type") == PIN_SESSION_TYPE
        and claims.get("sub") == str(grant.id)
        and claims.get("pin") == _pin_fingerprint(grant)
    )


async def verify_pin(session: AsyncSession, token: str, pin: str) -> PinCheck:
    """
    Check a PIN for a link token.

    A correct PIN resets the attempt counter and returns a signed pin_session
    for the portal. Each miss increments it; reaching PIN_MAX_ATTEMPTS locks
    the link for PIN_LOCKOUT_MINUTES, during which no PIN is compared. Once a
    lockout lapses the counter is not reset, so every further miss relocks
    until a correct PIN is entered.

    Misses are returned, not raised, so the caller's transaction can commit
    the counter.
    """
    result = await session.execute(
        select(AccessGrant)
        .where(
            AccessGrant.token_hash == hash_token(token),
            AccessGrant.channel == "link",
        )
        .with_for_update()
    )
    link = result.scalar_one_or_none()
    if not link or link.state == "revoked":
        raise AccessDeniedError("not_found")
    if not link.pin_required or not link.pin_hash:
        raise ValidationError("This bid link is not protected by a PIN")

    now = utcnow()
    if link.pin_locked_until is not None and link.pin_locked_until > now:
        logger.warning("access_pin_locked", grant_id=str(link.id))
        return PinCheck(valid=False, attempts_remaining=0, locked_until=link.pin_locked_until)

    if pin_context.verify(pin, link.pin_hash):
        link.pin_attempts = 0
        link.pin_locked_until = None
        await session.flush()
        pin_session, expires_at = issue_pin_session(link)
        logger.info("access_pin_verified", grant_id=str(link.id))
        return PinCheck(valid=True, pin_session=pin_session, session_expires_at=expires_at)

    attempts = link.pin_attempts + 1
    link.pin_attempts = attempts
    if attempts >= settings.PIN_MAX_ATTEMPTS:
        link.pin_locked_until = now + timedelta(minutes=settings.PIN_LOCKOUT_MINUTES)
    await session.flush()
    logger.warning(
        "access_pin_rejected",
        grant_id=str(link.id),
        attempts=attempts,
        locked=link.pin_locked_until is not None,
    )
    return PinCheck(
        valid=False,
        attempts_remaining=max(0, settings.PIN_MAX_ATTEMPTS - attempts),
        locked_until=link.pin_locked_until,
    )
