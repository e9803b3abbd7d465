from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class BaseSchema(BaseModel):
    """Base Pydantic schema; reads ORM objects directly."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class ErrorDetail(BaseSchema):
    """One problem with the request, optionally tied to an input field."""

    field: str | None = None
    message: str


class SuccessResponse(BaseSchema, Generic[T]):
    """Envelope for every successful API response."""

    success: bool = True
    data: T
    message: str | None = None


class ErrorResponse(BaseSchema):
    """
    Envelope for every error response.

    ``code`` tells apart conditions sharing a status code, e.g.
    ``NCF_EXHAUSTED`` (register a new range) and ``NCF_EXPIRED`` (renew the
    authorization), both 409.
    """

    success: bool = False
    data: None = None
    code: str = "APP_ERROR"
    message: str
    errors: list[ErrorDetail] = []


class TimestampMixin(BaseSchema):
    created_at: datetime
    updated_at: datetime
