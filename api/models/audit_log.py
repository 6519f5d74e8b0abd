import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, String, DateTime, ForeignKey, Index, Uuid, desc
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from api.clock import utcnow
from api.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id"), nullable=False
    )
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id")
    )
    actor_email: Mapped[Optional[str]] = mapped_column(String(255))
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    before_state: Mapped[Optional[dict]] = mapped_column(JsonDocument)
    after_state: Mapped[Optional[dict]] = mapped_column(JsonDocument)
    changed_fields: Mapped[Optional[list]] = mapped_column(JsonDocument)
    request_id: Mapped[Optional[str]] = mapped_column(String(64))
    # Use "metadata" as the column name in DB, but "extra_metadata" as Python attr
    # to avoid conflict with SQLAlchemy's reserved .metadata attribute
    extra_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JsonDocument, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_audit_tenant", "tenant_id"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_actor", "actor_id"),
        Index("idx_audit_created", desc("created_at")),
    )
