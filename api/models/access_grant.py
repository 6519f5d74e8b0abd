import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from api.clock import utcnow
from api.database import Base

CHANNELS = ("link", "account")
GRANT_STATES = ("active", "paused", "revoked")


class AccessGrant(Base):
    """
    One row per issued permission on an invite. Rows are never deleted;
    "revoked" is terminal. The channel discriminates link tokens from
    linked vendor accounts while sharing one set of state transitions.
    """

    __tablename__ = "bid_access_grants"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )
    bid_invite_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bid_invites.id", ondelete="CASCADE"), nullable=False
    )
    channel: Mapped[str] = mapped_column(String(10), nullable=False)
    state: Mapped[str] = mapped_column(String(10), default="active", nullable=False)
    # link channel
    token_hash: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    max_access_count: Mapped[Optional[int]] = mapped_column(Integer)
    access_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    pin_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pin_hash: Mapped[Optional[str]] = mapped_column(String(255))
    pin_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pin_locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime)
    # account channel
    linked_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE")
    )
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("channel IN ('link','account')", name="chk_access_grant_channel"),
        CheckConstraint(
            "state IN ('active','paused','revoked')", name="chk_access_grant_state"
        ),
        CheckConstraint(
            "(channel = 'link' AND token_hash IS NOT NULL AND linked_user_id IS NULL) OR "
            "(channel = 'account' AND linked_user_id IS NOT NULL AND token_hash IS NULL)",
            name="chk_access_grant_channel_payload",
        ),
        CheckConstraint(
            "pin_required = false OR (channel = 'link' AND pin_hash IS NOT NULL)",
            name="chk_access_grant_pin",
        ),
        Index("idx_access_grants_invite_channel_state", "bid_invite_id", "channel", "state"),
    )


Index(
    "uq_access_grants_live_account",
    AccessGrant.bid_invite_id,
    AccessGrant.linked_user_id,
    unique=True,
    postgresql_where=(AccessGrant.channel == "account") & (AccessGrant.state != "revoked"),
    sqlite_where=(AccessGrant.channel == "account") & (AccessGrant.state != "revoked"),
)
