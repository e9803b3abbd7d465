import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.companies.models import Company
from src.core.companies.schemas import CompanyCreate
from src.core.companies.service import CompanyService
from src.core.exceptions import DuplicateError, NotFoundError


class TestCompanyService:
    """Tests for CompanyService."""

    async def test_create_company_normalizes_rnc(self, db_session: AsyncSession):
        company = await CompanyService(db_session).create_company(
            CompanyCreate(name="Comercial Duarte SRL", rnc="1-01-01010-1")
        )

        assert company.id is not None
        assert company.rnc == "101010101"
        assert company.is_active is True

    async def test_create_company_duplicate_rnc(self, db_session: AsyncSession, company: Company):
        with pytest.raises(DuplicateError):
            await CompanyService(db_session).create_company(
                CompanyCreate(name="Otra SRL", rnc=company.rnc)
            )

    async def test_require_company_inactive(self, db_session: AsyncSession, company: Company):
        service = CompanyService(db_session)
        company.is_active = False
        await db_session.flush()

        with pytest.raises(NotFoundError):
            await service.require_company(company.id)

    def test_rnc_must_have_9_or_11_digits(self):
        with pytest.raises(PydanticValidationError):
            CompanyCreate(name="Mala SRL", rnc="12345")
        with pytest.raises(PydanticValidationError):
            CompanyCreate(name="Mala SRL", rnc="10101010A")

        assert CompanyCreate(name="Persona Física", rnc="001-1234567-8").rnc == "00112345678"
