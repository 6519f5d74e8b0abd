import uuid
from typing import Any, Optional

from api.errors import ValidationError


def as_uuid(value: Any, field_name: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise ValidationError(f"{field_name} must be a valid UUID", {"field": field_name})


def as_optional_uuid(value: Any, field_name: str = "id") -> Optional[uuid.UUID]:
    return None if value is None else as_uuid(value, field_name)
