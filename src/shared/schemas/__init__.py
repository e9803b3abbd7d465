from src.shared.schemas.base import (
    BaseSchema,
    SuccessResponse,
    ErrorResponse,
    ErrorDetail,
    TimestampMixin,
)

__all__ = [
    "BaseSchema",
    "SuccessResponse",
    "ErrorResponse",
    "ErrorDetail",
    "TimestampMixin",
]
