from datetime import date, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditLog
from src.core.companies.models import Company
from src.core.exceptions import NotFoundError, ValidationError
from src.modules.ncf.models import NCFBatch
from src.modules.ncf.schemas import NCFBatchCreate, NCFBatchUpdate
from src.modules.ncf.service import EXPIRATION_REQUIRED_MESSAGE, NCFService


def _next_year() -> date:
    return date.today() + timedelta(days=365)


class TestCreateBatch:
    """Tests for registering NCF batches."""

    async def test_create_batch_defaults(self, db_session: AsyncSession, company: Company):
        service = NCFService(db_session)

        batch = await service.create_batch(
            company.id,
            NCFBatchCreate(ncf_type="b02", range_start=1, range_end=100),
        )

        assert batch.id is not None
        assert batch.ncf_type == "B02"
        assert batch.series_prefix == "001"
        assert batch.last_used == 0
        assert batch.is_active is True
        assert batch.used == 0
        assert batch.available == 100
        assert batch.next_number == 1

    async def test_create_batch_writes_audit(self, db_session: AsyncSession, company: Company):
        service = NCFService(db_session)

        batch = await service.create_batch(
            company.id,
            NCFBatchCreate(ncf_type="B02", range_start=1, range_end=100),
            created_by_id=None,
        )

        result = await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.CREATE_NCF_BATCH.value)
        )
        entry = result.scalar_one()
        assert entry.entity_id == batch.id
        assert entry.company_id == company.id
        assert entry.new_values["range_end"] == 100

    @pytest.mark.parametrize("ncf_type", ["B01", "B14", "B15"])
    async def test_expiration_required(
        self, db_session: AsyncSession, company: Company, ncf_type: str
    ):
        service = NCFService(db_session)

        with pytest.raises(ValidationError) as exc_info:
            await service.create_batch(
                company.id,
                NCFBatchCreate(ncf_type=ncf_type, range_start=1, range_end=100),
            )

        assert exc_info.value.message == EXPIRATION_REQUIRED_MESSAGE
        assert exc_info.value.details["field"] == "expiration_date"

    async def test_expiration_optional_for_consumer_invoices(
        self, db_session: AsyncSession, company: Company
    ):
        batch = await NCFService(db_session).create_batch(
            company.id,
            NCFBatchCreate(ncf_type="B02", range_start=1, range_end=10),
        )

        assert batch.expiration_date is None

    async def test_range_end_before_start(self, db_session: AsyncSession, company: Company):
        with pytest.raises(ValidationError) as exc_info:
            await NCFService(db_session).create_batch(
                company.id,
                NCFBatchCreate(ncf_type="B02", range_start=100, range_end=50),
            )

        assert exc_info.value.details["field"] == "range_end"

    async def test_unknown_type(self, db_session: AsyncSession, company: Company):
        with pytest.raises(ValidationError):
            await NCFService(db_session).create_batch(
                company.id,
                NCFBatchCreate(ncf_type="Z99", range_start=1, range_end=10),
            )

    async def test_overlapping_range_rejected(self, db_session: AsyncSession, company: Company):
        service = NCFService(db_session)
        await service.create_batch(
            company.id,
            NCFBatchCreate(ncf_type="B02", range_start=1, range_end=100),
        )

        with pytest.raises(ValidationError) as exc_info:
            await service.create_batch(
                company.id,
                NCFBatchCreate(ncf_type="B02", range_start=100, range_end=200),
            )

        assert "overlaps" in exc_info.value.message

    async def test_same_range_other_type_or_company(
        self, db_session: AsyncSession, company: Company, other_company: Company
    ):
        service = NCFService(db_session)
        await service.create_batch(
            company.id,
            NCFBatchCreate(ncf_type="B02", range_start=1, range_end=100),
        )

        other_type = await service.create_batch(
            company.id,
            NCFBatchCreate(ncf_type="E32", range_start=1, range_end=100),
        )
        other_tenant = await service.create_batch(
            other_company.id,
            NCFBatchCreate(ncf_type="B02", range_start=1, range_end=100),
        )

        assert other_type.id is not None
        assert other_tenant.id is not None

    async def test_declared_last_used(self, db_session: AsyncSession, company: Company):
        service = NCFService(db_session)

        batch = await service.create_batch(
            company.id,
            NCFBatchCreate(ncf_type="B02", range_start=1, range_end=500, last_used=475),
        )
        assert batch.last_used == 475

        with pytest.raises(ValidationError):
            await service.create_batch(
                company.id,
                NCFBatchCreate(ncf_type="B02", range_start=1000, range_end=1100, last_used=1200),
            )


class TestUpdateBatch:
    """Tests for editing and deleting NCF batches."""

    async def _create(self, service: NCFService, company: Company, **kwargs) -> NCFBatch:
        data = {"ncf_type": "B02", "range_start": 1, "range_end": 100, **kwargs}
        return await service.create_batch(company.id, NCFBatchCreate(**data))

    async def test_extend_range(self, db_session: AsyncSession, company: Company):
        service = NCFService(db_session)
        batch = await self._create(service, company, last_used=100)
        assert batch.is_exhausted is True

        updated = await service.update_batch(
            batch.id, company.id, NCFBatchUpdate(range_end=200)
        )

        assert updated.range_end == 200
        assert updated.is_exhausted is False
        assert updated.next_number == 101

    async def test_shrink_below_last_used_rejected(
        self, db_session: AsyncSession, company: Company
    ):
        service = NCFService(db_session)
        batch = await self._create(service, company, last_used=50)

        with pytest.raises(ValidationError) as exc_info:
            await service.update_batch(batch.id, company.id, NCFBatchUpdate(range_end=49))

        assert exc_info.value.details["field"] == "range_end"

        shrunk = await service.update_batch(batch.id, company.id, NCFBatchUpdate(range_end=50))
        assert shrunk.range_end == 50
        assert shrunk.is_exhausted is True

    async def test_extension_cannot_overlap(self, db_session: AsyncSession, company: Company):
        service = NCFService(db_session)
        first = await self._create(service, company)
        await self._create(service, company, range_start=101, range_end=200)

        with pytest.raises(ValidationError):
            await service.update_batch(first.id, company.id, NCFBatchUpdate(range_end=150))

    async def test_clear_required_expiration_rejected(
        self, db_session: AsyncSession, company: Company
    ):
        service = NCFService(db_session)
        batch = await self._create(service, company, ncf_type="B01", expiration_date=_next_year())

        with pytest.raises(ValidationError):
            await service.update_batch(
                batch.id, company.id, NCFBatchUpdate(expiration_date=None)
            )

    async def test_deactivate_and_audit_diff(self, db_session: AsyncSession, company: Company):
        service = NCFService(db_session)
        batch = await self._create(service, company)

        updated = await service.update_batch(
            batch.id, company.id, NCFBatchUpdate(is_active=False)
        )

        assert updated.is_active is False
        result = await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.UPDATE_NCF_BATCH.value)
        )
        entry = result.scalar_one()
        assert entry.old_values == {"is_active": True}
        assert entry.new_values == {"is_active": False}

    async def test_delete_hides_batch_and_keeps_range_reserved(
        self, db_session: AsyncSession, company: Company
    ):
        service = NCFService(db_session)
        batch = await self._create(service, company)

        deleted = await service.delete_batch(batch.id, company.id)

        assert deleted.deleted_at is not None
        assert deleted.is_active is False
        assert await service.list_batches(company.id) == []
        with pytest.raises(NotFoundError):
            await service.get_batch(batch.id, company.id)
        with pytest.raises(ValidationError):
            await self._create(service, company, range_start=50, range_end=150)

    async def test_batches_scoped_to_company(
        self, db_session: AsyncSession, company: Company, other_company: Company
    ):
        service = NCFService(db_session)
        batch = await self._create(service, company)

        with pytest.raises(NotFoundError):
            await service.get_batch(batch.id, other_company.id)
        with pytest.raises(NotFoundError):
            await service.delete_batch(batch.id, other_company.id)

    async def test_list_batches_filters(self, db_session: AsyncSession, company: Company):
        service = NCFService(db_session)
        b02 = await self._create(service, company)
        inactive = await self._create(service, company, range_start=101, range_end=200)
        await service.update_batch(inactive.id, company.id, NCFBatchUpdate(is_active=False))
        await self._create(service, company, ncf_type="E32")

        assert len(await service.list_batches(company.id)) == 3
        assert [b.id for b in await service.list_batches(company.id, ncf_type="B02")] == [
            b02.id,
            inactive.id,
        ]
        active = await service.list_batches(company.id, ncf_type="B02", include_inactive=False)
        assert [b.id for b in active] == [b02.id]

    async def test_batch_history(self, db_session: AsyncSession, company: Company):
        """Registration, edits, issued numbers and deletion, newest first."""
        service = NCFService(db_session)
        batch = await self._create(service, company)
        await service.allocate_next(company.id, "B02")
        await service.update_batch(batch.id, company.id, NCFBatchUpdate(description="Sucursal 2"))
        await service.delete_batch(batch.id, company.id)

        history = await service.get_batch_history(batch.id, company.id)

        assert [entry.action for entry in history] == [
            AuditAction.DELETE_NCF_BATCH.value,
            AuditAction.UPDATE_NCF_BATCH.value,
            AuditAction.ALLOCATE_NCF.value,
            AuditAction.CREATE_NCF_BATCH.value,
        ]
        assert history[1].changed_fields == ["description"]

    async def test_batch_history_other_company(
        self, db_session: AsyncSession, company: Company, other_company: Company
    ):
        service = NCFService(db_session)
        batch = await self._create(service, company)

        with pytest.raises(NotFoundError):
            await service.get_batch_history(batch.id, other_company.id)
