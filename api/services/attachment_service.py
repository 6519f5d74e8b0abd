"""
Attachment service: associates stored file ids with bid entities.

File bytes live elsewhere; this only keeps (entity_type, entity_id, file_id)
links, scoped to the tenant that owns the entity.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.errors import NotFoundError, ValidationError
from api.models.bid_package import BidAddendum, BidPackage
from api.models.bid_submission import BidSubmission
from api.models.file_link import FileLink, LINKABLE_ENTITY_TYPES
from api.services.audit_service import create_audit_log
from api.utils import as_uuid, as_optional_uuid

logger = structlog.get_logger()

_ENTITY_MODELS = {
    "bid_package": BidPackage,
    "bid_addendum": BidAddendum,
    "bid_submission": BidSubmission,
}


async def _assert_entity(session: AsyncSession, tenant_id, entity_type: str, entity_id) -> None:
    if entity_type not in LINKABLE_ENTITY_TYPES:
        raise ValidationError(
            f"Files cannot be attached to '{entity_type}'",
            {"allowed": list(LINKABLE_ENTITY_TYPES)},
        )
    model = _ENTITY_MODELS[entity_type]
    result = await session.execute(
        select(model.id).where(model.id == entity_id, model.tenant_id == tenant_id)
    )
    if result.scalar_one_or_none() is None:
        raise NotFoundError(f"{entity_type} not found", {"entity_id": str(entity_id)})


async def attach(
    session: AsyncSession,
    tenant_id,
    entity_type: str,
    entity_id,
    file_id,
    actor_id: Optional[str] = None,
) -> FileLink:
    """Idempotent: attaching the same file twice returns the existing link."""
    tenant_id = as_uuid(tenant_id, "tenant_id")
    entity_id = as_uuid(entity_id, "entity_id")
    file_id = as_uuid(file_id, "file_id")
    await _assert_entity(session, tenant_id, entity_type, entity_id)

    existing = (
        await session.execute(
            select(FileLink).where(
                FileLink.entity_type == entity_type,
                FileLink.entity_id == entity_id,
                FileLink.file_id == file_id,
            )
        )
    ).scalar_one_or_none()
    if existing:
        return existing

    link = FileLink(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        file_id=file_id,
        created_by=as_optional_uuid(actor_id, "actor_id"),
    )
    session.add(link)
    await session.flush()

    await create_audit_log(
        session,
        tenant_id=tenant_id,
        actor_id=actor_id,
        action="attach",
        entity_type=entity_type,
        entity_id=entity_id,
        extra_metadata={"file_id": str(file_id), "file_link_id": str(link.id)},
    )
    logger.info("file_attached", entity_type=entity_type, entity_id=str(entity_id), file_id=str(file_id))
    return link


async def detach(session: AsyncSession, tenant_id, link_id, actor_id: Optional[str] = None) -> None:
    result = await session.execute(
        select(FileLink).where(
            FileLink.id == as_uuid(link_id, "link_id"),
            FileLink.tenant_id == as_uuid(tenant_id, "tenant_id"),
        )
    )
    link = result.scalar_one_or_none()
    if not link:
        raise NotFoundError("Attachment not found", {"link_id": str(link_id)})

    await session.delete(link)
    await session.flush()
    await create_audit_log(
        session,
        tenant_id=link.tenant_id,
        actor_id=actor_id,
        action="detach",
        entity_type=link.entity_type,
        entity_id=link.entity_id,
        extra_metadata={"file_id": str(link.file_id), "file_link_id": str(link.id)},
    )
    logger.info("file_detached", file_link_id=str(link.id))


async def list_links(session: AsyncSession, tenant_id, entity_type: str, entity_id) -> list[FileLink]:
    if entity_type not in LINKABLE_ENTITY_TYPES:
        raise ValidationError(f"Unknown attachment entity type '{entity_type}'")
    result = await session.execute(
        select(FileLink)
        .where(
            FileLink.tenant_id == as_uuid(tenant_id, "tenant_id"),
            FileLink.entity_type == entity_type,
            FileLink.entity_id == as_uuid(entity_id, "entity_id"),
        )
        .order_by(FileLink.created_at.asc())
    )
    return list(result.scalars().all())
