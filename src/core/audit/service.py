from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Standard audit actions."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"

    # Fiscal sequences
    CREATE_NCF_BATCH = "CREATE_NCF_BATCH"
    UPDATE_NCF_BATCH = "UPDATE_NCF_BATCH"
    DELETE_NCF_BATCH = "DELETE_NCF_BATCH"
    ALLOCATE_NCF = "ALLOCATE_NCF"


class AuditService:
    """Service for creating audit logs.

    Services receive one of these at construction time so tests can swap in
    a recording fake.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str | AuditAction,
        entity_type: str,
        entity_id: int,
        company_id: int | None = None,
        user_id: int | None = None,
        entity_identifier: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
        ip_address: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry."""
        audit_log = AuditLog(
            company_id=company_id,
            user_id=user_id,
            action=str(action),
            entity_type=entity_type,
            entity_id=entity_id,
            entity_identifier=entity_identifier,
            old_values=old_values,
            new_values=new_values,
            comment=comment,
            ip_address=ip_address,
        )

        self.db.add(audit_log)
        await self.db.flush()

        return audit_log

    async def list_for_entity(
        self,
        entity_type: str,
        entity_id: int,
        company_id: int | None = None,
        limit: int = 200,
    ) -> list[AuditLog]:
        """History of one record, newest first."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
        )
        if company_id is not None:
            stmt = stmt.where(AuditLog.company_id == company_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
