#!/usr/bin/env python3
"""
Seed a demo company with users and a realistic set of NCF batches.

The batches cover the common cases the UI shows: a fresh consumer range,
a tax-credit range close to exhaustion, a government range about to expire,
and an electronic purchases range.

Usage:
    python scripts/seed_demo_data.py --dry-run   # nothing is written
    python scripts/seed_demo_data.py --confirm   # write to the database

Requires migrations applied (alembic upgrade head) and a reachable database.
"""

import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.models import UserRole
from src.core.auth.service import AuthService
from src.core.companies.models import Company
from src.core.companies.schemas import CompanyCreate
from src.core.companies.service import CompanyService
from src.core.config import settings
from src.core.database.session import async_session
from src.modules.ncf.models import NCFBatch
from src.modules.ncf.schemas import NCFBatchCreate
from src.modules.ncf.service import NCFService

DEMO_RNC = "101010101"
DEMO_PASSWORD = "Demo12345"

USERS = [
    ("admin@demo.do", "Administrador Demo", UserRole.ADMIN),
    ("contabilidad@demo.do", "Contabilidad Demo", UserRole.ACCOUNTANT),
    ("caja@demo.do", "Caja Demo", UserRole.CASHIER),
]


def batches_config(today: date) -> list[NCFBatchCreate]:
    return [
        NCFBatchCreate(ncf_type="B02", range_start=1, range_end=5000, description="Consumo 2025"),
        NCFBatchCreate(
            ncf_type="B01",
            range_start=1,
            range_end=500,
            last_used=475,
            expiration_date=today + timedelta(days=240),
            description="Crédito fiscal, casi agotado",
        ),
        NCFBatchCreate(
            ncf_type="B14",
            range_start=1,
            range_end=200,
            last_used=12,
            expiration_date=today + timedelta(days=4),
            description="Gubernamental, vence esta semana",
        ),
        NCFBatchCreate(ncf_type="E31", range_start=1, range_end=1000),
    ]


async def seed_company(session: AsyncSession) -> Company:
    service = CompanyService(session)
    company = await service.get_company_by_rnc(DEMO_RNC)
    if company:
        print("  Company already exists, skip.")
        return company
    company = await service.create_company(CompanyCreate(name="Demo Comercial SRL", rnc=DEMO_RNC))
    print(f"  Created company {company.name} (RNC {company.rnc}).")
    return company


async def seed_users(session: AsyncSession, company: Company) -> int:
    """Create demo users; return the admin user id."""
    auth_service = AuthService(session)
    admin_id = None
    created = 0
    for email, full_name, role in USERS:
        user = await auth_service.get_user_by_email(email)
        if not user:
            user = await auth_service.create_user(
                email=email,
                password=DEMO_PASSWORD,
                full_name=full_name,
                role=role,
                company_id=company.id,
            )
            created += 1
        if role == UserRole.ADMIN:
            admin_id = user.id
    print(f"  Created {created} users.")
    return admin_id


async def seed_batches(session: AsyncSession, company: Company, user_id: int) -> None:
    r = await session.execute(select(NCFBatch.id).where(NCFBatch.company_id == company.id).limit(1))
    if r.scalar_one_or_none():
        print("  NCF batches already exist, skip.")
        return

    service = NCFService(session)
    configs = batches_config(date.today())
    for data in configs:
        await service.create_batch(company.id, data, created_by_id=user_id)

    # A few issued B02 numbers so the ledger is not empty
    for i in range(1, 4):
        await service.allocate_next(
            company.id, "B02", issued_by_id=user_id, document_reference=f"FAC-{i:05d}"
        )
    print(f"  Created {len(configs)} NCF batches and 3 issued B02 numbers.")


async def run_seed(session: AsyncSession, dry_run: bool) -> None:
    company = await seed_company(session)
    user_id = await seed_users(session, company)
    await seed_batches(session, company, user_id)

    if dry_run:
        await session.rollback()
        print("\n[DRY-RUN] Rolled back, no data written.")
    else:
        await session.commit()
        print("\nSeed completed successfully.")


async def main() -> None:
    import argparse
    parser = argparse.ArgumentParser(description="Seed database with NCF demo data")
    parser.add_argument("--dry-run", action="store_true", help="Do not commit")
    parser.add_argument("--confirm", action="store_true", help="Commit changes")
    args = parser.parse_args()
    if not args.dry_run and not args.confirm:
        print("Use --dry-run or --confirm")
        sys.exit(1)

    print("Database:", settings.database_url.split("@")[-1] if "@" in settings.database_url else "?")
    print("Mode:", "DRY-RUN" if args.dry_run else "CONFIRM")
    async with async_session() as session:
        await run_seed(session, dry_run=args.dry_run)
    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
