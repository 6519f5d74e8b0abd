import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
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

PACKAGE_STATUSES = ("draft", "sent", "open", "closed", "awarded", "cancelled")

# Manual transitions allowed through UpdatePackage. "awarded" is only
# reachable through the award path, and nothing leaves a terminal state.
PACKAGE_TRANSITIONS = {
    "draft": {"sent", "open", "cancelled"},
    "sent": {"open", "closed", "cancelled"},
    "open": {"closed", "cancelled"},
    "closed": {"open", "cancelled"},
    "awarded": set(),
    "cancelled": set(),
}

BIDDING_CLOSED_STATUSES = ("closed", "awarded", "cancelled")


class BidPackage(Base):
    __tablename__ = "bid_packages"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    trade: Mapped[Optional[str]] = mapped_column(String(100))
    scope: Mapped[Optional[str]] = mapped_column(Text)
    instructions: Mapped[Optional[str]] = mapped_column(Text)
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft','sent','open','closed','awarded','cancelled')",
            name="chk_bid_package_status",
        ),
        Index("idx_bid_packages_tenant_project_status", "tenant_id", "project_id", "status"),
        Index("idx_bid_packages_project_due", "project_id", "due_at"),
    )


class BidAddendum(Base):
    __tablename__ = "bid_addenda"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )
    bid_package_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bid_packages.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(300))
    message: Mapped[Optional[str]] = mapped_column(Text)
    issued_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL")
    )

    __table_args__ = (
        UniqueConstraint("bid_package_id", "number", name="uq_bid_addendum_package_number"),
        CheckConstraint("number >= 1", name="chk_bid_addendum_number"),
    )


class BidAddendumAcknowledgement(Base):
    __tablename__ = "bid_addendum_acknowledgements"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )
    bid_addendum_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bid_addenda.id", ondelete="CASCADE"), nullable=False
    )
    bid_invite_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bid_invites.id", ondelete="CASCADE"), nullable=False
    )
    acknowledged_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("bid_addendum_id", "bid_invite_id", name="uq_bid_addendum_ack"),
        Index("idx_bid_addendum_ack_invite", "bid_invite_id"),
    )
