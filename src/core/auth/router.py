from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import CurrentUser
from src.core.auth.schemas import (
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    TokenResponse,
    UserResponse,
)
from src.core.auth.service import AuthService
from src.core.companies.schemas import CompanyResponse
from src.core.companies.service import CompanyService
from src.core.database import get_db
from src.shared.schemas import SuccessResponse

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=SuccessResponse[LoginResponse])
async def login(
    request: Request,
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate user and return tokens scoped to the user's company."""
    user, access_token, refresh_token = await AuthService(db).authenticate(
        email=data.email,
        password=data.password,
        ip_address=request.client.host if request.client else None,
    )

    company = None
    if user.company_id is not None:
        company = await CompanyService(db).get_company_by_id(user.company_id)

    return SuccessResponse(
        data=LoginResponse(
            user=UserResponse.model_validate(user),
            company=CompanyResponse.model_validate(company) if company else None,
            access_token=access_token,
            refresh_token=refresh_token,
        ),
        message="Login successful",
    )


@router.post("/refresh", response_model=SuccessResponse[TokenResponse])
async def refresh_tokens(
    data: RefreshRequest,
    db: AsyncSession = Depends(get_db),
):
    access_token, refresh_token = await AuthService(db).refresh_tokens(data.refresh_token)
    return SuccessResponse(
        data=TokenResponse(access_token=access_token, refresh_token=refresh_token),
        message="Tokens refreshed",
    )


@router.get("/me", response_model=SuccessResponse[UserResponse])
async def get_current_user_info(current_user: CurrentUser):
    return SuccessResponse(
        data=UserResponse.model_validate(current_user),
        message="User info retrieved",
    )
