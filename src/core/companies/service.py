from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditService
from src.core.companies.models import Company
from src.core.companies.schemas import CompanyCreate
from src.core.exceptions import DuplicateError, NotFoundError


class CompanyService:
    """Service for company (tenant) records."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit = AuditService(session)

    async def get_company_by_id(self, company_id: int) -> Company | None:
        result = await self.session.execute(select(Company).where(Company.id == company_id))
        return result.scalar_one_or_none()

    async def get_company_by_rnc(self, rnc: str) -> Company | None:
        result = await self.session.execute(select(Company).where(Company.rnc == rnc))
        return result.scalar_one_or_none()

    async def require_company(self, company_id: int) -> Company:
        """Get an active company or raise NotFoundError."""
        company = await self.get_company_by_id(company_id)
        if not company or not company.is_active:
            raise NotFoundError("Company", company_id)
        return company

    async def create_company(self, data: CompanyCreate, created_by_id: int | None = None) -> Company:
        """Register a new company; RNC must be unique."""
        if await self.get_company_by_rnc(data.rnc):
            raise DuplicateError("Company", "rnc", data.rnc)

        company = Company(name=data.name, rnc=data.rnc, is_active=True)
        self.session.add(company)
        await self.session.flush()
        await self.session.refresh(company)

        await self.audit.log(
            action=AuditAction.CREATE,
            entity_type="Company",
            entity_id=company.id,
            company_id=company.id,
            user_id=created_by_id,
            entity_identifier=company.rnc,
            new_values={"name": company.name, "rnc": company.rnc},
        )

        return company
