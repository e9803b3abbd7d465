from datetime import datetime

from pydantic import EmailStr

from src.core.companies.schemas import CompanyResponse
from src.shared.schemas import BaseSchema


class LoginRequest(BaseSchema):
    """Login request schema."""

    email: EmailStr
    password: str


class TokenResponse(BaseSchema):
    """Token response schema."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseSchema):
    """Refresh token request schema."""

    refresh_token: str


class UserResponse(BaseSchema):
    """User as seen by clients; never includes the password hash."""

    id: int
    company_id: int | None
    email: str
    full_name: str
    role: str
    is_active: bool
    last_login_at: datetime | None
    created_at: datetime


class LoginResponse(BaseSchema):
    """
    Login response with user and tokens.

    ``company`` is the tenant whose RNC every NCF issued in this session
    belongs to; null for the platform super admin.
    """

    user: UserResponse
    company: CompanyResponse | None = None
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
