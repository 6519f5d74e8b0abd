"""Audit logging service: records entity state changes."""

from typing import Any, Optional
from datetime import date, datetime
import uuid

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.clock import utcnow
from api.models.audit_log import AuditLog

logger = structlog.get_logger()


def _to_uuid(value: Optional[Any], field_name: str, required: bool = False) -> Optional[uuid.UUID]:
    if value is None:
        if required:
            raise ValueError(f"{field_name} is required")
        return None
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        if required:
            raise ValueError(f"{field_name} must be a valid UUID")
        logger.warning("audit_invalid_uuid", field=field_name, value=str(value))
        return None


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def snapshot(entity: Any, exclude: tuple[str, ...] = ()) -> dict:
    """Column values of an ORM row as a JSON-safe dict."""
    mapper = inspect(entity).mapper
    return {
        attr.key: _jsonable(getattr(entity, attr.key))
        for attr in mapper.column_attrs
        if attr.key not in exclude
    }


def _compute_changed_fields(
    before: Optional[dict], after: Optional[dict]
) -> Optional[list[str]]:
    """Diff two state dicts and return list of changed field names."""
    if not before or not after:
        return None
    changed = []
    all_keys = set(before.keys()) | set(after.keys())
    for key in sorted(all_keys):
        if before.get(key) != after.get(key):
            changed.append(key)
    return changed or None


async def create_audit_log(
    session: AsyncSession,
    tenant_id: Any,
    actor_id: Optional[Any],
    action: str,
    entity_type: str,
    entity_id: Any,
    before_state: Optional[dict] = None,
    after_state: Optional[dict] = None,
    actor_email: Optional[str] = None,
    extra_metadata: Optional[dict] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    Uses session.flush(): caller owns the transaction, so the entry commits
    or rolls back together with the change it describes.
    """
    changed_fields = _compute_changed_fields(before_state, after_state)

    audit = AuditLog(
        tenant_id=_to_uuid(tenant_id, "tenant_id", required=True),
        actor_id=_to_uuid(actor_id, "actor_id"),
        actor_email=actor_email,
        action=action,
        entity_type=entity_type,
        entity_id=_to_uuid(entity_id, "entity_id", required=True),
        before_state=before_state,
        after_state=after_state,
        changed_fields=changed_fields,
        request_id=structlog.contextvars.get_contextvars().get("request_id"),
        extra_metadata=extra_metadata or {},
        created_at=utcnow(),
    )
    session.add(audit)
    await session.flush()

    logger.info(
        "audit_log_created",
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_id=str(actor_id) if actor_id else None,
    )
    return audit
