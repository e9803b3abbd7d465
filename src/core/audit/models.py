from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, String, Text, func
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, BigIntPK

AuditJSON = JSON().with_variant(postgresql.JSONB(), "postgresql")


class AuditLog(Base):
    """
    Append-only trail of fiscal changes: batch registration and edits, every
    issued NCF, logins.

    ``old_values`` / ``new_values`` hold only the fields that changed. Rows are
    never updated or deleted; DGII may ask who issued or altered a range.
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    company_id: Mapped[int | None] = mapped_column(BigIntPK, nullable=True, index=True)
    user_id: Mapped[int | None] = mapped_column(BigIntPK, nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    entity_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_id: Mapped[int] = mapped_column(BigIntPK, nullable=False)
    # Human-readable handle, e.g. the NCF string or "B02 1-500"
    entity_identifier: Mapped[str | None] = mapped_column(String(200), nullable=True)

    old_values: Mapped[dict | None] = mapped_column(AuditJSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(AuditJSON, nullable=True)

    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )

    @property
    def changed_fields(self) -> list[str]:
        return sorted(set(self.old_values or {}) | set(self.new_values or {}))
