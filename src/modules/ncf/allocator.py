import logging
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from src.core.audit import AuditAction, AuditService
from src.core.config import settings
from src.core.exceptions import (
    AllocationContentionError,
    ConcurrencyConflictError,
    DuplicateError,
    ExhaustedError,
    ExpiredError,
)
from src.modules.ncf.models import NCFBatch, NCFIssuance
from src.modules.ncf.registry import format_ncf, require_ncf_type

logger = logging.getLogger(__name__)


class NCFAllocator:
    """
    Hands out NCF numbers from a company's batches.

    Selection: among active, non-deleted batches of the type, the oldest
    (lowest id) that is neither exhausted nor expired.

    Each attempt reads the batch row fresh (``SELECT ... FOR UPDATE``, a row
    lock on PostgreSQL) and moves the cursor with a compare-and-swap:

        UPDATE ncf_batches SET last_used = :next
        WHERE id = :id AND last_used = :expected

    If no row matches, another transaction got there first; the attempt is
    retried up to ``settings.ncf_allocation_max_attempts`` times.
    """

    def __init__(
        self,
        session: AsyncSession,
        audit: AuditService | None = None,
        max_attempts: int | None = None,
    ):
        self.session = session
        self.audit = audit or AuditService(session)
        self.max_attempts = max_attempts or settings.ncf_allocation_max_attempts

    async def allocate_next(
        self,
        company_id: int,
        ncf_type: str,
        issued_by_id: int | None = None,
        document_reference: str | None = None,
        today: date | None = None,
    ) -> NCFIssuance:
        """
        Issue the next NCF of ``ncf_type`` for the company.

        Raises:
            ValidationError: unknown type
            ExhaustedError: no active batch or no capacity left
            ExpiredError: the only batches with capacity are past expiration
            AllocationContentionError: lost the race on every attempt
        """
        code = require_ncf_type(ncf_type).code
        today = today or date.today()

        for attempt in range(1, self.max_attempts + 1):
            batch = await self._select_batch(company_id, code, today, lock=True)
            expected = batch.last_used
            next_number = expected + 1
            try:
                await self._compare_and_swap(batch, expected, next_number)
            except ConcurrencyConflictError:
                logger.warning(
                    "NCF %s batch %s cursor moved during allocation (attempt %s/%s)",
                    code, batch.id, attempt, self.max_attempts,
                )
                continue

            return await self._record_issuance(
                batch, next_number, issued_by_id=issued_by_id, document_reference=document_reference
            )

        logger.critical(
            "NCF %s allocation for company %s failed after %s attempts; sustained contention",
            code, company_id, self.max_attempts,
        )
        raise AllocationContentionError(code, self.max_attempts)

    async def preview_next(
        self, company_id: int, ncf_type: str, today: date | None = None
    ) -> str | None:
        """The NCF the next allocation would return, without issuing it."""
        code = require_ncf_type(ncf_type).code
        today = today or date.today()
        candidates = await self._active_batches(company_id, code, lock=False)
        batch = _pick_batch(candidates, today)
        if batch is None:
            return None
        return format_ncf(code, batch.last_used + 1)

    async def _active_batches(self, company_id: int, ncf_type: str, lock: bool) -> list[NCFBatch]:
        stmt = (
            select(NCFBatch)
            .where(
                NCFBatch.company_id == company_id,
                NCFBatch.ncf_type == ncf_type,
                NCFBatch.is_active.is_(True),
                NCFBatch.deleted_at.is_(None),
            )
            .order_by(NCFBatch.id)
            # Never trust a cursor cached in the identity map
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _select_batch(
        self, company_id: int, ncf_type: str, today: date, lock: bool
    ) -> NCFBatch:
        candidates = await self._active_batches(company_id, ncf_type, lock=lock)
        batch = _pick_batch(candidates, today)
        if batch is not None:
            return batch

        if not candidates:
            raise ExhaustedError(ncf_type)

        with_capacity = [b for b in candidates if not b.is_exhausted]
        if not with_capacity:
            raise ExhaustedError(ncf_type, batch_id=candidates[-1].id)

        expired = with_capacity[0]
        raise ExpiredError(ncf_type, expired.id, expired.expiration_date)

    async def _compare_and_swap(self, batch: NCFBatch, expected: int, next_number: int) -> None:
        stmt = (
            update(NCFBatch)
            .where(
                NCFBatch.id == batch.id,
                NCFBatch.last_used == expected,
                NCFBatch.range_end >= next_number,
                NCFBatch.is_active.is_(True),
                NCFBatch.deleted_at.is_(None),
            )
            .values(last_used=next_number)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise ConcurrencyConflictError(batch.id, expected)
        set_committed_value(batch, "last_used", next_number)

    async def _record_issuance(
        self,
        batch: NCFBatch,
        number: int,
        issued_by_id: int | None,
        document_reference: str | None,
    ) -> NCFIssuance:
        ncf = format_ncf(batch.ncf_type, number)
        issuance = NCFIssuance(
            company_id=batch.company_id,
            batch_id=batch.id,
            ncf_type=batch.ncf_type,
            sequence_number=number,
            ncf=ncf,
            document_reference=document_reference,
            issued_by_id=issued_by_id,
        )
        self.session.add(issuance)
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.critical(
                "Duplicate NCF %s detected for company %s (batch %s): %s",
                ncf, batch.company_id, batch.id, e.orig,
            )
            raise DuplicateError("NCF", "ncf", ncf) from e

        await self.audit.log(
            action=AuditAction.ALLOCATE_NCF,
            entity_type="NCFBatch",
            entity_id=batch.id,
            company_id=batch.company_id,
            user_id=issued_by_id,
            entity_identifier=ncf,
            old_values={"last_used": number - 1},
            new_values={"last_used": number, "document_reference": document_reference},
        )

        logger.info("Issued NCF %s from batch %s (company %s)", ncf, batch.id, batch.company_id)
        return issuance


def _pick_batch(candidates: list[NCFBatch], today: date) -> NCFBatch | None:
    """Oldest batch that still has capacity and is not expired."""
    for batch in candidates:
        if not batch.is_exhausted and not batch.is_expired(today):
            return batch
    return None
