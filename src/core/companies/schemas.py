from datetime import datetime

from pydantic import field_validator

from src.shared.schemas import BaseSchema


class CompanyCreate(BaseSchema):
    """Schema for registering a company."""

    name: str
    rnc: str

    @field_validator("rnc")
    @classmethod
    def validate_rnc(cls, v: str) -> str:
        v = v.replace("-", "").strip()
        if not v.isdigit() or len(v) not in (9, 11):
            raise ValueError("RNC must have 9 or 11 digits")
        return v


class CompanyResponse(BaseSchema):
    """Schema for company response."""

    id: int
    name: str
    rnc: str
    is_active: bool
    created_at: datetime
