from datetime import date, datetime
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, BaseModel, BigIntPK, TombstoneMixin


class NCFBatchStatus(StrEnum):
    """Derived batch status, first match wins in this order."""

    EXPIRED = "expired"
    INACTIVE = "inactive"
    CRITICAL = "critical"
    WARNING = "warning"
    ACTIVE = "active"


class NCFBatch(TombstoneMixin, BaseModel):
    """
    A contiguous range of NCF sequence numbers authorized by DGII for one type.

    ``last_used`` is the cursor: the highest number issued so far, or
    ``range_start - 1`` when nothing has been issued. It only ever moves
    forward, one step per allocation.

    Deleted batches are tombstoned (``deleted_at`` set) and kept so that no
    later batch can reuse their numbers.
    """

    __tablename__ = "ncf_batches"

    company_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("companies.id"), nullable=False)
    ncf_type: Mapped[str] = mapped_column(String(3), nullable=False)
    series_prefix: Mapped[str] = mapped_column(String(10), nullable=False)

    range_start: Mapped[int] = mapped_column(BigInteger, nullable=False)
    range_end: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_used: Mapped[int] = mapped_column(BigInteger, nullable=False)

    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
    updated_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        CheckConstraint("range_start >= 1", name="range_start_positive"),
        CheckConstraint("range_end >= range_start", name="range_order"),
        CheckConstraint("last_used >= range_start - 1", name="cursor_lower"),
        CheckConstraint("last_used <= range_end", name="cursor_upper"),
        Index("ix_ncf_batches_company_type_active", "company_id", "ncf_type", "is_active"),
    )

    @property
    def total(self) -> int:
        return self.range_end - self.range_start + 1

    @property
    def used(self) -> int:
        return self.last_used - self.range_start + 1

    @property
    def available(self) -> int:
        return self.range_end - self.last_used

    @property
    def usage_percent(self) -> float:
        return round(self.used / self.total * 100, 2)

    def usage_reaches(self, percent: float) -> bool:
        """Exact threshold check; ``usage_percent`` is rounded for display only."""
        return self.used * 100 >= percent * self.total

    @property
    def is_exhausted(self) -> bool:
        return self.last_used >= self.range_end

    @property
    def next_number(self) -> int | None:
        return None if self.is_exhausted else self.last_used + 1

    def is_expired(self, today: date) -> bool:
        """Expired once the expiration day has passed; the day itself is still valid."""
        return self.expiration_date is not None and self.expiration_date < today

    def days_to_expiration(self, today: date) -> int | None:
        if self.expiration_date is None:
            return None
        return (self.expiration_date - today).days


class NCFIssuance(Base):
    """Ledger of every NCF handed out. One row per number, unique per company."""

    __tablename__ = "ncf_issuances"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("companies.id"), nullable=False)
    batch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("ncf_batches.id"), nullable=False, index=True
    )
    ncf_type: Mapped[str] = mapped_column(String(3), nullable=False)
    sequence_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    ncf: Mapped[str] = mapped_column(String(19), nullable=False)
    document_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    issued_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("company_id", "ncf", name="uq_ncf_issuance_company_ncf"),
    )
