from datetime import datetime
from typing import Any

from src.shared.schemas import BaseSchema


class AuditLogResponse(BaseSchema):
    """One audit trail entry."""

    id: int
    user_id: int | None
    action: str
    entity_type: str
    entity_id: int
    entity_identifier: str | None
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    changed_fields: list[str]
    comment: str | None
    created_at: datetime
