from datetime import date, datetime

from pydantic import Field, field_validator

from src.modules.ncf.registry import NCFTypeCode
from src.shared.schemas import BaseSchema, TimestampMixin


def _normalize_type_code(v: str) -> str:
    return v.strip().upper()


# --- NCF Type Schemas ---

class NCFTypeResponse(BaseSchema):
    """NCF type reference data."""

    code: NCFTypeCode
    description: str
    applies_to_credit: bool
    applies_to_final_consumer: bool
    requires_expiration: bool
    is_electronic: bool


# --- Batch Schemas ---

class NCFBatchCreate(BaseSchema):
    """Schema for registering a DGII-authorized NCF range."""

    ncf_type: str
    range_start: int = Field(ge=1)
    range_end: int = Field(ge=1)
    expiration_date: date | None = None
    series_prefix: str | None = Field(default=None, max_length=10)
    # Numbers already consumed elsewhere (e.g. migrating from another system)
    last_used: int | None = None
    description: str | None = None

    @field_validator("ncf_type")
    @classmethod
    def normalize_type(cls, v: str) -> str:
        return _normalize_type_code(v)


class NCFBatchUpdate(BaseSchema):
    """
    Schema for editing a batch.

    Only fields present in the request are applied; sending
    ``expiration_date: null`` explicitly clears the date.
    """

    range_end: int | None = Field(default=None, ge=1)
    is_active: bool | None = None
    expiration_date: date | None = None
    description: str | None = None


class NCFBatchResponse(TimestampMixin):
    """Batch with its computed usage and expiration figures."""

    id: int
    company_id: int
    ncf_type: str
    series_prefix: str
    range_start: int
    range_end: int
    last_used: int
    expiration_date: date | None
    is_active: bool
    description: str | None

    used: int
    available: int
    usage_percent: float
    next_number: int | None
    is_exhausted: bool
    days_to_expiration: int | None
    status: str


# --- Allocation Schemas ---

class NCFAllocateRequest(BaseSchema):
    """Request the next NCF of a type for the caller's company."""

    ncf_type: str
    document_reference: str | None = Field(default=None, max_length=100)

    @field_validator("ncf_type")
    @classmethod
    def normalize_type(cls, v: str) -> str:
        return _normalize_type_code(v)


class NCFAllocateResponse(BaseSchema):
    ncf: str
    ncf_type: str
    sequence_number: int
    batch_id: int


class NCFPreviewResponse(BaseSchema):
    ncf_type: str
    next_ncf: str | None


# --- Validation Schemas ---

class NCFCheckRequest(BaseSchema):
    """Externally supplied NCF (e.g. from a vendor invoice) to check."""

    ncf: str
    expected_type: str

    @field_validator("ncf")
    @classmethod
    def strip_ncf(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("expected_type")
    @classmethod
    def normalize_type(cls, v: str) -> str:
        return _normalize_type_code(v)


class NCFCheckResult(BaseSchema):
    ncf: str
    expected_type: str
    is_valid: bool
    type_known: bool
    ncf_type: str | None = None
    sequence_number: int | None = None
    batch_id: int | None = None
    already_issued: bool = False


# --- Alert Schemas ---

class UsageAlert(BaseSchema):
    batch_id: int
    ncf_type: str
    usage_percent: float
    available: int
    severity: str


class ExpirationAlert(BaseSchema):
    batch_id: int
    ncf_type: str
    expiration_date: date
    days_remaining: int
    severity: str


class NCFIssuanceResponse(BaseSchema):
    id: int
    batch_id: int
    ncf_type: str
    sequence_number: int
    ncf: str
    document_reference: str | None
    issued_at: datetime
