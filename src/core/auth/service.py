from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditService
from src.core.auth.jwt import create_access_token, create_refresh_token, decode_token
from src.core.auth.models import User, UserRole
from src.core.auth.password import hash_password, verify_password
from src.core.companies.service import CompanyService
from src.core.exceptions import AuthenticationError, DuplicateError, ValidationError


class AuthService:
    """Service for authentication operations."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit = AuditService(session)

    async def get_user_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: int) -> User | None:
        stmt = select(User).where(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_user(
        self,
        email: str,
        password: str,
        full_name: str,
        role: UserRole,
        company_id: int | None = None,
        created_by_id: int | None = None,
    ) -> User:
        """Create a new user attached to a company."""
        if role != UserRole.SUPER_ADMIN and company_id is None:
            raise ValidationError("Only the super admin may exist without a company", field="company_id")

        if company_id is not None:
            await CompanyService(self.session).require_company(company_id)

        if await self.get_user_by_email(email):
            raise DuplicateError("User", "email", email)

        user = User(
            company_id=company_id,
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
            role=role.value,
            is_active=True,
        )

        self.session.add(user)
        await self.session.flush()
        await self.session.refresh(user)

        await self.audit.log(
            action=AuditAction.CREATE,
            entity_type="User",
            entity_id=user.id,
            company_id=company_id,
            user_id=created_by_id,
            entity_identifier=user.email,
            new_values={"email": user.email, "role": user.role, "full_name": user.full_name},
        )

        return user

    async def authenticate(
        self, email: str, password: str, ip_address: str | None = None
    ) -> tuple[User, str, str]:
        """
        Authenticate user and return tokens.

        Returns:
            Tuple of (user, access_token, refresh_token)

        Raises:
            AuthenticationError: If credentials are invalid
        """
        user = await self.get_user_by_email(email)

        if not user or not user.can_login:
            raise AuthenticationError("Invalid email or password")

        if not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid email or password")

        if not user.is_active:
            raise AuthenticationError("User account is deactivated")

        user.last_login_at = datetime.now(timezone.utc)
        await self.session.flush()

        access_token = create_access_token(user.id, user.role, user.company_id)
        refresh_token = create_refresh_token(user.id)

        await self.audit.log(
            action=AuditAction.LOGIN,
            entity_type="User",
            entity_id=user.id,
            company_id=user.company_id,
            user_id=user.id,
            entity_identifier=user.email,
            ip_address=ip_address,
        )

        return user, access_token, refresh_token

    async def refresh_tokens(self, refresh_token: str) -> tuple[str, str]:
        """Issue a new token pair from a valid refresh token."""
        payload = decode_token(refresh_token, token_type="refresh")

        user = await self.get_user_by_id(int(payload["sub"]))

        if not user:
            raise AuthenticationError("User not found")

        if not user.is_active:
            raise AuthenticationError("User account is deactivated")

        return (
            create_access_token(user.id, user.role, user.company_id),
            create_refresh_token(user.id),
        )
