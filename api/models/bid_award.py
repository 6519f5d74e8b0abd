import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Text, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from api.clock import utcnow
from api.database import Base


class BidAward(Base):
    __tablename__ = "bid_awards"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )
    # unique: the second award on a package fails at the database
    bid_package_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bid_packages.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    awarded_submission_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bid_submissions.id"), nullable=False
    )
    awarded_commitment_id: Mapped[Optional[str]] = mapped_column(Text)
    awarded_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL")
    )
    awarded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    notes: Mapped[Optional[str]] = mapped_column(Text)
