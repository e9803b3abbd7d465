import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditLog
from src.core.auth.jwt import decode_token
from src.core.auth.models import UserRole
from src.core.auth.service import AuthService
from src.core.companies.models import Company
from src.core.exceptions import (
    AuthenticationError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)


class TestAuthService:
    """Tests for AuthService."""

    async def test_create_user(self, db_session: AsyncSession, company: Company):
        """Test creating a new user."""
        auth_service = AuthService(db_session)

        user = await auth_service.create_user(
            email="test@duarte.do",
            password="Password123",
            full_name="Test User",
            role=UserRole.ADMIN,
            company_id=company.id,
        )

        assert user.id is not None
        assert user.email == "test@duarte.do"
        assert user.company_id == company.id
        assert user.role == "Admin"
        assert user.is_active is True
        assert user.password_hash != "Password123"  # Password should be hashed

    async def test_create_user_requires_company(self, db_session: AsyncSession):
        """Only the super admin may exist without a company."""
        auth_service = AuthService(db_session)

        with pytest.raises(ValidationError):
            await auth_service.create_user(
                email="test@duarte.do",
                password="Password123",
                full_name="Test User",
                role=UserRole.ACCOUNTANT,
            )

        super_admin = await auth_service.create_user(
            email="root@ncf.do",
            password="Password123",
            full_name="Platform Admin",
            role=UserRole.SUPER_ADMIN,
        )
        assert super_admin.company_id is None

    async def test_create_user_unknown_company(self, db_session: AsyncSession):
        auth_service = AuthService(db_session)

        with pytest.raises(NotFoundError):
            await auth_service.create_user(
                email="test@duarte.do",
                password="Password123",
                full_name="Test User",
                role=UserRole.CASHIER,
                company_id=9999,
            )

    async def test_create_user_duplicate_email(self, db_session: AsyncSession, company: Company):
        """Test that duplicate email raises error."""
        auth_service = AuthService(db_session)

        await auth_service.create_user(
            email="test@duarte.do",
            password="Password123",
            full_name="Test User",
            role=UserRole.ADMIN,
            company_id=company.id,
        )

        with pytest.raises(DuplicateError) as exc_info:
            await auth_service.create_user(
                email="test@duarte.do",
                password="AnotherPass123",
                full_name="Another User",
                role=UserRole.CASHIER,
                company_id=company.id,
            )

        assert "already exists" in str(exc_info.value)

    async def test_authenticate_success(self, db_session: AsyncSession, company: Company):
        """Token carries the user's company."""
        auth_service = AuthService(db_session)

        await auth_service.create_user(
            email="test@duarte.do",
            password="Password123",
            full_name="Test User",
            role=UserRole.ACCOUNTANT,
            company_id=company.id,
        )

        user, access_token, refresh_token = await auth_service.authenticate(
            email="test@duarte.do",
            password="Password123",
        )

        assert user.last_login_at is not None
        payload = decode_token(access_token, token_type="access")
        assert payload["sub"] == str(user.id)
        assert payload["company_id"] == company.id
        assert refresh_token is not None

        result = await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.LOGIN.value)
        )
        assert result.scalar_one().company_id == company.id

    async def test_authenticate_wrong_password(self, db_session: AsyncSession, company: Company):
        """Test authentication with wrong password."""
        auth_service = AuthService(db_session)

        await auth_service.create_user(
            email="test@duarte.do",
            password="Password123",
            full_name="Test User",
            role=UserRole.ADMIN,
            company_id=company.id,
        )

        with pytest.raises(AuthenticationError):
            await auth_service.authenticate(
                email="test@duarte.do",
                password="WrongPassword",
            )

    async def test_authenticate_inactive_user(self, db_session: AsyncSession, company: Company):
        """Test authentication with inactive user."""
        auth_service = AuthService(db_session)

        user = await auth_service.create_user(
            email="test@duarte.do",
            password="Password123",
            full_name="Test User",
            role=UserRole.ADMIN,
            company_id=company.id,
        )
        user.is_active = False
        await db_session.flush()

        with pytest.raises(AuthenticationError) as exc_info:
            await auth_service.authenticate(
                email="test@duarte.do",
                password="Password123",
            )

        assert "deactivated" in str(exc_info.value)


class TestAuthEndpoints:
    """Tests for auth API endpoints."""

    async def _create_user(self, db_session: AsyncSession, company: Company) -> None:
        await AuthService(db_session).create_user(
            email="test@duarte.do",
            password="Password123",
            full_name="Test User",
            role=UserRole.ADMIN,
            company_id=company.id,
        )
        await db_session.commit()

    async def test_login_success(
        self, client: AsyncClient, db_session: AsyncSession, company: Company
    ):
        """Test login endpoint."""
        await self._create_user(db_session, company)

        response = await client.post(
            "/api/v1/auth/login",
            json={"email": "test@duarte.do", "password": "Password123"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert "access_token" in data["data"]
        assert "refresh_token" in data["data"]
        assert data["data"]["user"]["email"] == "test@duarte.do"
        assert data["data"]["user"]["company_id"] == company.id
        assert data["data"]["company"]["rnc"] == "101010101"

    async def test_login_wrong_credentials(self, client: AsyncClient):
        """Test login with wrong credentials."""
        response = await client.post(
            "/api/v1/auth/login",
            json={"email": "wrong@duarte.do", "password": "WrongPass"},
        )

        assert response.status_code == 401
        assert response.json()["success"] is False

    async def test_refresh_tokens(
        self, client: AsyncClient, db_session: AsyncSession, company: Company
    ):
        await self._create_user(db_session, company)
        login_response = await client.post(
            "/api/v1/auth/login",
            json={"email": "test@duarte.do", "password": "Password123"},
        )
        refresh_token = login_response.json()["data"]["refresh_token"]

        response = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})

        assert response.status_code == 200
        assert response.json()["data"]["access_token"]

    async def test_get_me_unauthorized(self, client: AsyncClient):
        """Test /me endpoint without token."""
        response = await client.get("/api/v1/auth/me")
        assert response.status_code == 401

    async def test_get_me_authorized(
        self, client: AsyncClient, db_session: AsyncSession, company: Company
    ):
        """Test /me endpoint with valid token."""
        await self._create_user(db_session, company)

        login_response = await client.post(
            "/api/v1/auth/login",
            json={"email": "test@duarte.do", "password": "Password123"},
        )
        access_token = login_response.json()["data"]["access_token"]

        response = await client.get(
            "/api/v1/auth/me",
            headers={"Authorization": f"Bearer {access_token}"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["data"]["email"] == "test@duarte.do"
