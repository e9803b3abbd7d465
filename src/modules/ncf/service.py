import logging
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from src.core.audit import AuditAction, AuditLog, AuditService
from src.core.config import settings
from src.core.exceptions import NotFoundError, ValidationError
from src.modules.ncf.allocator import NCFAllocator
from src.modules.ncf.models import NCFBatch, NCFBatchStatus, NCFIssuance
from src.modules.ncf.registry import (
    NCF_MAX_SEQUENCE,
    NCFType,
    get_ncf_type,
    parse_ncf,
    require_ncf_type,
    validate_format,
)
from src.modules.ncf.schemas import (
    ExpirationAlert,
    NCFBatchCreate,
    NCFBatchResponse,
    NCFBatchUpdate,
    NCFCheckResult,
    UsageAlert,
)

logger = logging.getLogger(__name__)

EXPIRATION_REQUIRED_MESSAGE = "this NCF type requires an expiration date"


class NCFService:
    """
    Fiscal sequence (NCF) management for a company.

    Built per request with the database session and, optionally, an audit
    logger; nothing here is shared between requests.
    """

    def __init__(self, session: AsyncSession, audit: AuditService | None = None):
        self.session = session
        self.audit = audit or AuditService(session)
        self.allocator = NCFAllocator(session, audit=self.audit)

    # --- Batch Methods ---

    async def get_batch_by_id(self, batch_id: int, company_id: int) -> NCFBatch | None:
        """Get a non-deleted batch of the company."""
        stmt = select(NCFBatch).where(
            NCFBatch.id == batch_id,
            NCFBatch.company_id == company_id,
            NCFBatch.deleted_at.is_(None),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_batch(self, batch_id: int, company_id: int) -> NCFBatch:
        batch = await self.get_batch_by_id(batch_id, company_id)
        if not batch:
            raise NotFoundError("NCF batch", batch_id)
        return batch

    async def list_batches(
        self,
        company_id: int,
        ncf_type: str | None = None,
        include_inactive: bool = True,
    ) -> list[NCFBatch]:
        """List the company's batches, by type then oldest first."""
        stmt = (
            select(NCFBatch)
            .where(NCFBatch.company_id == company_id, NCFBatch.deleted_at.is_(None))
            .order_by(NCFBatch.ncf_type, NCFBatch.id)
        )
        if ncf_type:
            stmt = stmt.where(NCFBatch.ncf_type == require_ncf_type(ncf_type).code)
        if not include_inactive:
            stmt = stmt.where(NCFBatch.is_active.is_(True))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create_batch(
        self,
        company_id: int,
        data: NCFBatchCreate,
        created_by_id: int | None = None,
    ) -> NCFBatch:
        """
        Register a DGII-authorized range.

        The cursor starts at ``range_start - 1`` (nothing issued) unless the
        caller declares numbers already used elsewhere via ``last_used``.
        """
        ncf_type = require_ncf_type(data.ncf_type)

        if data.range_start < 1:
            raise ValidationError("Range start must be at least 1", field="range_start")
        if data.range_end < data.range_start:
            raise ValidationError(
                "Range end must be greater than or equal to range start", field="range_end"
            )
        if data.range_end > NCF_MAX_SEQUENCE:
            raise ValidationError(
                f"Range end cannot exceed {NCF_MAX_SEQUENCE}", field="range_end"
            )
        _check_expiration_policy(ncf_type, data.expiration_date)

        last_used = data.range_start - 1 if data.last_used is None else data.last_used
        if last_used < data.range_start - 1 or last_used > data.range_end:
            raise ValidationError(
                f"Last used number must be between {data.range_start - 1} and {data.range_end}",
                field="last_used",
            )

        await self._check_overlap(company_id, ncf_type.code, data.range_start, data.range_end)

        batch = NCFBatch(
            company_id=company_id,
            ncf_type=ncf_type.code,
            series_prefix=data.series_prefix or settings.ncf_default_series_prefix,
            range_start=data.range_start,
            range_end=data.range_end,
            last_used=last_used,
            expiration_date=data.expiration_date,
            is_active=True,
            description=data.description,
            created_by_id=created_by_id,
            updated_by_id=created_by_id,
        )
        self.session.add(batch)
        await self.session.flush()
        await self.session.refresh(batch)

        await self.audit.log(
            action=AuditAction.CREATE_NCF_BATCH,
            entity_type="NCFBatch",
            entity_id=batch.id,
            company_id=company_id,
            user_id=created_by_id,
            entity_identifier=_batch_identifier(batch),
            new_values=_batch_values(batch),
        )
        logger.info("Created NCF batch %s (%s) for company %s", batch.id, _batch_identifier(batch), company_id)

        return batch

    async def update_batch(
        self,
        batch_id: int,
        company_id: int,
        data: NCFBatchUpdate,
        updated_by_id: int | None = None,
    ) -> NCFBatch:
        """
        Edit range end, active flag, expiration date or description.

        The range end may move in either direction but never below the
        numbers already issued; that bound is enforced again inside the
        UPDATE so a concurrent allocation cannot slip past it.
        """
        batch = await self._get_batch_for_update(batch_id, company_id)
        ncf_type = require_ncf_type(batch.ncf_type)
        fields = data.model_fields_set
        old_values = _batch_values(batch)

        if "range_end" in fields and data.range_end is not None and data.range_end != batch.range_end:
            await self._change_range_end(batch, data.range_end)

        if "expiration_date" in fields:
            _check_expiration_policy(ncf_type, data.expiration_date)
            batch.expiration_date = data.expiration_date

        if "is_active" in fields and data.is_active is not None:
            batch.is_active = data.is_active

        if "description" in fields:
            batch.description = data.description

        batch.updated_by_id = updated_by_id
        await self.session.flush()
        await self.session.refresh(batch)

        new_values = _batch_values(batch)
        await self.audit.log(
            action=AuditAction.UPDATE_NCF_BATCH,
            entity_type="NCFBatch",
            entity_id=batch.id,
            company_id=company_id,
            user_id=updated_by_id,
            entity_identifier=_batch_identifier(batch),
            old_values={k: v for k, v in old_values.items() if new_values.get(k) != v},
            new_values={k: v for k, v in new_values.items() if old_values.get(k) != v},
        )
        logger.info("Updated NCF batch %s for company %s", batch.id, company_id)

        return batch

    async def delete_batch(
        self,
        batch_id: int,
        company_id: int,
        deleted_by_id: int | None = None,
    ) -> NCFBatch:
        """
        Remove a batch from use.

        The row is tombstoned rather than dropped: documents keep their NCF
        strings and the range stays reserved against reuse.
        """
        batch = await self._get_batch_for_update(batch_id, company_id)
        old_values = _batch_values(batch)

        batch.deleted_at = datetime.now(timezone.utc)
        batch.is_active = False
        batch.updated_by_id = deleted_by_id
        await self.session.flush()
        await self.session.refresh(batch)

        await self.audit.log(
            action=AuditAction.DELETE_NCF_BATCH,
            entity_type="NCFBatch",
            entity_id=batch.id,
            company_id=company_id,
            user_id=deleted_by_id,
            entity_identifier=_batch_identifier(batch),
            old_values=old_values,
        )
        logger.info("Deleted NCF batch %s for company %s", batch.id, company_id)

        return batch

    async def _get_batch_for_update(self, batch_id: int, company_id: int) -> NCFBatch:
        stmt = (
            select(NCFBatch)
            .where(
                NCFBatch.id == batch_id,
                NCFBatch.company_id == company_id,
                NCFBatch.deleted_at.is_(None),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        batch = result.scalar_one_or_none()
        if not batch:
            raise NotFoundError("NCF batch", batch_id)
        return batch

    async def _change_range_end(self, batch: NCFBatch, range_end: int) -> None:
        if range_end < batch.range_start:
            raise ValidationError(
                "Range end must be greater than or equal to range start", field="range_end"
            )
        if range_end < batch.last_used:
            raise ValidationError(
                f"Range end cannot be lower than the last issued number ({batch.last_used})",
                field="range_end",
            )
        if range_end > NCF_MAX_SEQUENCE:
            raise ValidationError(f"Range end cannot exceed {NCF_MAX_SEQUENCE}", field="range_end")

        if range_end > batch.range_end:
            await self._check_overlap(
                batch.company_id, batch.ncf_type, batch.range_end + 1, range_end, exclude_id=batch.id
            )

        stmt = (
            update(NCFBatch)
            .where(NCFBatch.id == batch.id, NCFBatch.last_used <= range_end)
            .values(range_end=range_end)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise ValidationError(
                "Range end cannot be lower than the last issued number", field="range_end"
            )
        set_committed_value(batch, "range_end", range_end)

    async def _check_overlap(
        self,
        company_id: int,
        ncf_type: str,
        range_start: int,
        range_end: int,
        exclude_id: int | None = None,
    ) -> None:
        """Reject ranges that intersect another batch, deleted ones included."""
        stmt = (
            select(NCFBatch)
            .where(
                NCFBatch.company_id == company_id,
                NCFBatch.ncf_type == ncf_type,
                NCFBatch.range_start <= range_end,
                NCFBatch.range_end >= range_start,
            )
            .order_by(NCFBatch.id)
            .limit(1)
        )
        if exclude_id is not None:
            stmt = stmt.where(NCFBatch.id != exclude_id)
        result = await self.session.execute(stmt)
        overlapping = result.scalar_one_or_none()
        if overlapping:
            raise ValidationError(
                f"Range {range_start}-{range_end} overlaps NCF batch {overlapping.id} "
                f"({overlapping.range_start}-{overlapping.range_end}) of type {ncf_type}",
                field="range_start",
            )

    # --- Allocation ---

    async def allocate_next(
        self,
        company_id: int,
        ncf_type: str,
        issued_by_id: int | None = None,
        document_reference: str | None = None,
    ) -> str:
        """Issue the next NCF string; see NCFAllocator for the selection rules."""
        issuance = await self.allocate(
            company_id, ncf_type, issued_by_id=issued_by_id, document_reference=document_reference
        )
        return issuance.ncf

    async def allocate(
        self,
        company_id: int,
        ncf_type: str,
        issued_by_id: int | None = None,
        document_reference: str | None = None,
    ) -> NCFIssuance:
        return await self.allocator.allocate_next(
            company_id,
            ncf_type,
            issued_by_id=issued_by_id,
            document_reference=document_reference,
            today=self.today(),
        )

    async def preview_next(self, company_id: int, ncf_type: str) -> str | None:
        return await self.allocator.preview_next(company_id, ncf_type, today=self.today())

    async def list_issuances(self, batch_id: int, company_id: int) -> list[NCFIssuance]:
        """NCFs issued from a batch, in issue order."""
        batch = await self.get_batch(batch_id, company_id)
        stmt = (
            select(NCFIssuance)
            .where(NCFIssuance.batch_id == batch.id)
            .order_by(NCFIssuance.sequence_number)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_batch_history(self, batch_id: int, company_id: int) -> list[AuditLog]:
        """
        Audit trail of a batch, newest first: registration, edits, deletion
        and every NCF issued from it. Deleted batches keep their history.
        """
        stmt = select(NCFBatch.id).where(NCFBatch.id == batch_id, NCFBatch.company_id == company_id)
        if (await self.session.execute(stmt)).scalar_one_or_none() is None:
            raise NotFoundError("NCF batch", batch_id)
        return await self.audit.list_for_entity("NCFBatch", batch_id, company_id=company_id)

    # --- Validation ---

    @staticmethod
    def validate_format(ncf: str, expected_type: str) -> bool:
        return validate_format(ncf, expected_type)

    async def check_ncf(self, company_id: int, ncf: str, expected_type: str) -> NCFCheckResult:
        """
        Check an externally supplied NCF before accepting it into a transaction.

        Reports format validity against the expected type, and whether the
        number falls inside one of the company's own batches or was already
        issued by this company.
        """
        parsed = parse_ncf(ncf)
        result = NCFCheckResult(
            ncf=ncf,
            expected_type=expected_type,
            is_valid=validate_format(ncf, expected_type),
            type_known=False,
        )
        if parsed is None:
            return result

        code, number = parsed
        result.ncf_type = code
        result.sequence_number = number
        result.type_known = get_ncf_type(code) is not None
        if not result.type_known:
            result.is_valid = False
            return result

        stmt = (
            select(NCFBatch.id)
            .where(
                NCFBatch.company_id == company_id,
                NCFBatch.ncf_type == code,
                NCFBatch.deleted_at.is_(None),
                NCFBatch.range_start <= number,
                NCFBatch.range_end >= number,
            )
            .limit(1)
        )
        result.batch_id = (await self.session.execute(stmt)).scalar_one_or_none()

        stmt = select(NCFIssuance.id).where(
            NCFIssuance.company_id == company_id, NCFIssuance.ncf == ncf
        )
        result.already_issued = (await self.session.execute(stmt)).first() is not None

        return result

    # --- Reporting ---

    def today(self) -> date:
        return date.today()

    def batch_status(self, batch: NCFBatch, today: date | None = None) -> NCFBatchStatus:
        today = today or self.today()
        if batch.is_expired(today):
            return NCFBatchStatus.EXPIRED
        if not batch.is_active:
            return NCFBatchStatus.INACTIVE
        if batch.usage_reaches(settings.ncf_usage_critical_percent):
            return NCFBatchStatus.CRITICAL
        if batch.usage_reaches(settings.ncf_usage_warning_percent):
            return NCFBatchStatus.WARNING
        return NCFBatchStatus.ACTIVE

    def to_response(self, batch: NCFBatch, today: date | None = None) -> NCFBatchResponse:
        """Batch with computed usage, expiration and status fields."""
        today = today or self.today()
        return NCFBatchResponse(
            id=batch.id,
            company_id=batch.company_id,
            ncf_type=batch.ncf_type,
            series_prefix=batch.series_prefix,
            range_start=batch.range_start,
            range_end=batch.range_end,
            last_used=batch.last_used,
            expiration_date=batch.expiration_date,
            is_active=batch.is_active,
            description=batch.description,
            used=batch.used,
            available=batch.available,
            usage_percent=batch.usage_percent,
            next_number=batch.next_number,
            is_exhausted=batch.is_exhausted,
            days_to_expiration=batch.days_to_expiration(today),
            status=self.batch_status(batch, today).value,
            created_at=batch.created_at,
            updated_at=batch.updated_at,
        )

    async def get_usage_alerts(self, company_id: int) -> list[UsageAlert]:
        """Batches at or above the warning usage threshold, most used first."""
        alerts = []
        for batch in await self.list_batches(company_id):
            if not batch.usage_reaches(settings.ncf_usage_warning_percent):
                continue
            severity = (
                "critical" if batch.usage_reaches(settings.ncf_usage_critical_percent) else "warning"
            )
            alerts.append(
                UsageAlert(
                    batch_id=batch.id,
                    ncf_type=batch.ncf_type,
                    usage_percent=batch.usage_percent,
                    available=batch.available,
                    severity=severity,
                )
            )
        alerts.sort(key=lambda a: (-a.usage_percent, a.batch_id))
        return alerts

    async def get_expiration_alerts(
        self, company_id: int, horizon_days: int | None = None
    ) -> list[ExpirationAlert]:
        """
        Batches expiring within the horizon, soonest first.

        Severity: expired (past the date), critical (5 days or less),
        warning (15 or less), info (rest of the horizon).
        """
        if horizon_days is None:
            horizon_days = settings.ncf_expiration_horizon_days
        today = self.today()

        alerts = []
        for batch in await self.list_batches(company_id):
            days = batch.days_to_expiration(today)
            if days is None or days > horizon_days:
                continue
            alerts.append(
                ExpirationAlert(
                    batch_id=batch.id,
                    ncf_type=batch.ncf_type,
                    expiration_date=batch.expiration_date,
                    days_remaining=days,
                    severity=_expiration_severity(days),
                )
            )
        alerts.sort(key=lambda a: (a.days_remaining, a.batch_id))
        return alerts


def _expiration_severity(days: int) -> str:
    if days < 0:
        return "expired"
    if days <= settings.ncf_expiration_critical_days:
        return "critical"
    if days <= settings.ncf_expiration_warning_days:
        return "warning"
    return "info"


def _check_expiration_policy(ncf_type: NCFType, expiration_date: date | None) -> None:
    if ncf_type.requires_expiration and expiration_date is None:
        raise ValidationError(EXPIRATION_REQUIRED_MESSAGE, field="expiration_date")


def _batch_identifier(batch: NCFBatch) -> str:
    return f"{batch.ncf_type} {batch.range_start}-{batch.range_end}"


def _batch_values(batch: NCFBatch) -> dict[str, Any]:
    return {
        "ncf_type": batch.ncf_type,
        "series_prefix": batch.series_prefix,
        "range_start": batch.range_start,
        "range_end": batch.range_end,
        "last_used": batch.last_used,
        "expiration_date": str(batch.expiration_date) if batch.expiration_date else None,
        "is_active": batch.is_active,
        "description": batch.description,
    }
