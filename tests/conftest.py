from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.core.companies.models import Company
from src.core.companies.schemas import CompanyCreate
from src.core.companies.service import CompanyService
from src.core.database.base import Base
from src.core.database import get_db
from src.main import app

# In-memory SQLite shared by every connection of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh database per test."""
    test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def company(db_session: AsyncSession) -> Company:
    return await CompanyService(db_session).create_company(
        CompanyCreate(name="Comercial Duarte SRL", rnc="101-01010-1")
    )


@pytest.fixture
async def other_company(db_session: AsyncSession) -> Company:
    return await CompanyService(db_session).create_company(
        CompanyCreate(name="Ferretería Cibao SRL", rnc="130000002")
    )

