import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
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

INVITE_STATUSES = ("draft", "sent", "viewed", "declined", "submitted")


class BidInvite(Base):
    __tablename__ = "bid_invites"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )
    bid_package_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bid_packages.id", ondelete="CASCADE"), nullable=False
    )
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="CASCADE")
    )
    contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="SET NULL")
    )
    invite_email: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    require_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft','sent','viewed','declined','submitted')",
            name="chk_bid_invite_status",
        ),
        CheckConstraint(
            "company_id IS NOT NULL OR contact_id IS NOT NULL OR invite_email IS NOT NULL",
            name="chk_bid_invite_invitee",
        ),
        Index("idx_bid_invites_package", "bid_package_id", "status"),
    )

    @property
    def invitee_key(self) -> tuple[str, str]:
        """The identity that dedupes invites on a package: contact, then company, then email."""
        if self.contact_id is not None:
            return ("contact", str(self.contact_id))
        if self.company_id is not None:
            return ("company", str(self.company_id))
        return ("email", (self.invite_email or "").lower())


Index(
    "uq_bid_invites_package_company",
    BidInvite.bid_package_id,
    BidInvite.company_id,
    unique=True,
    postgresql_where=BidInvite.company_id.isnot(None),
    sqlite_where=BidInvite.company_id.isnot(None),
)
Index(
    "uq_bid_invites_package_contact",
    BidInvite.bid_package_id,
    BidInvite.contact_id,
    unique=True,
    postgresql_where=BidInvite.contact_id.isnot(None),
    sqlite_where=BidInvite.contact_id.isnot(None),
)
Index(
    "uq_bid_invites_package_email",
    BidInvite.bid_package_id,
    BidInvite.invite_email,
    unique=True,
    postgresql_where=BidInvite.invite_email.isnot(None),
    sqlite_where=BidInvite.invite_email.isnot(None),
)
