import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.core.config import settings
from src.core.exceptions import AppException
from src.shared.schemas import ErrorResponse, ErrorDetail

logger = logging.getLogger(__name__)

_OPERATOR_ACTION_CODES = frozenset({"NCF_EXHAUSTED", "NCF_EXPIRED"})


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle application exceptions.

    Running out of usable NCFs blocks invoicing until someone registers a new
    DGII range, so those are logged at WARNING; 5xx at ERROR.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    elif exc.code in _OPERATOR_ACTION_CODES:
        logger.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)

    field = exc.details.get("field")
    errors = [ErrorDetail(field=field, message=exc.message)]

    response = ErrorResponse(
        code=exc.code,
        message=exc.message,
        errors=errors,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(),
    )


def _format_validation_errors(errors: list[dict]) -> list[ErrorDetail]:
    details: list[ErrorDetail] = []
    for error in errors:
        loc = error.get("loc", ())
        # Drop top-level "body" for cleaner field paths
        if loc and loc[0] == "body":
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) if loc else None
        details.append(ErrorDetail(field=field, message=error.get("msg", "Invalid value")))
    return details


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI validation errors."""
    response = ErrorResponse(
        code="VALIDATION_ERROR",
        message="Validation error",
        errors=_format_validation_errors(exc.errors()),
    )
    return JSONResponse(
        status_code=422,
        content=response.model_dump(),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle generic HTTP exceptions."""
    errors = [ErrorDetail(field=None, message=str(exc.detail) if exc.detail else "HTTP error")]
    response = ErrorResponse(
        code="HTTP_ERROR",
        message=str(exc.detail) if exc.detail else "HTTP error",
        errors=errors,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(),
    )


def _friendly_db_error(exc: Exception) -> tuple[str, str | None, int, str]:
    """
    Convert common DB constraint errors to a stable, user-facing message.

    Note: we intentionally do not expose full DB error details unless debug is enabled.
    """
    raw = str(getattr(exc, "orig", exc))
    lower = raw.lower()

    if "does not exist" in lower and "column" in lower:
        # Typical after deploying code without running Alembic migrations.
        return (
            "Database schema is out of date. Run the latest migrations and try again.",
            None,
            500,
            "SCHEMA_OUTDATED",
        )

    if "uq_ncf_issuance_company_ncf" in lower or (
        "ncf_issuances" in lower and "unique" in lower
    ):
        return ("This NCF has already been issued for the company.", "ncf", 409, "DUPLICATE")

    if "ck_ncf_batches_" in lower or ("ncf_batches" in lower and "check" in lower):
        return (
            "NCF batch range is inconsistent: the cursor must stay within the authorized range.",
            "range_end",
            409,
            "NCF_RANGE_INVALID",
        )

    if settings.debug:
        return (raw, None, 500, "DATABASE_ERROR")

    return ("Database error", None, 500, "DATABASE_ERROR")


async def sqlalchemy_db_error_handler(request: Request, exc: Exception) -> JSONResponse:
    message, field, status_code, code = _friendly_db_error(exc)
    if status_code >= 500:
        logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    response = ErrorResponse(
        code=code,
        message=message,
        errors=[ErrorDetail(field=field, message=message)],
    )
    return JSONResponse(status_code=status_code, content=response.model_dump())
