from src.core.auth.models import User, UserRole
from src.core.auth.service import AuthService
from src.core.auth.jwt import create_access_token, create_refresh_token, decode_token
from src.core.auth.dependencies import get_current_user, get_current_company_id, require_roles

__all__ = [
    "User",
    "UserRole",
    "AuthService",
    "create_access_token",
    "create_refresh_token",
    "decode_token",
    "get_current_user",
    "get_current_company_id",
    "require_roles",
]
