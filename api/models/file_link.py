import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from api.clock import utcnow
from api.database import Base

LINKABLE_ENTITY_TYPES = ("bid_package", "bid_addendum", "bid_submission")


class FileLink(Base):
    __tablename__ = "file_links"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    file_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "file_id", name="uq_file_link_entity_file"),
        CheckConstraint(
            "entity_type IN ('bid_package','bid_addendum','bid_submission')",
            name="chk_file_link_entity_type",
        ),
        Index("idx_file_links_entity", "entity_type", "entity_id"),
    )
