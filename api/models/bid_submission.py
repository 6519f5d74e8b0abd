import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Boolean,
    Integer,
    Date,
    DateTime,
    Text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from api.clock import utcnow
from api.database import Base


class BidSubmission(Base):
    __tablename__ = "bid_submissions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )
    bid_invite_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bid_invites.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="submitted", nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_awarded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    currency: Mapped[str] = mapped_column(String(3), default="usd", nullable=False)
    valid_until: Mapped[Optional[date]] = mapped_column(Date)
    lead_time_days: Mapped[Optional[int]] = mapped_column(Integer)
    duration_days: Mapped[Optional[int]] = mapped_column(Integer)
    start_available_on: Mapped[Optional[date]] = mapped_column(Date)
    exclusions: Mapped[Optional[str]] = mapped_column(Text)
    clarifications: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    submitted_by_name: Mapped[Optional[str]] = mapped_column(String(200))
    submitted_by_email: Mapped[Optional[str]] = mapped_column(String(255))
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("bid_invite_id", "version", name="uq_bid_submission_version"),
        CheckConstraint("version >= 1", name="chk_bid_submission_version"),
        CheckConstraint(
            "status IN ('submitted','revised')", name="chk_bid_submission_status"
        ),
        CheckConstraint(
            "total_cents IS NULL OR total_cents >= 0", name="chk_bid_submission_total"
        ),
        Index("idx_bid_submissions_invite", "bid_invite_id"),
    )


# At most one current version per invite, enforced by the database.
Index(
    "uq_bid_submissions_current",
    BidSubmission.bid_invite_id,
    unique=True,
    postgresql_where=BidSubmission.is_current.is_(True),
    sqlite_where=BidSubmission.is_current.is_(True),
)
