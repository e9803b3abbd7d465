from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditLogResponse
from src.core.auth.dependencies import (
    AdminUser,
    CurrentCompanyId,
    CurrentUser,
    FiscalManagerUser,
)
from src.core.database import get_db
from src.core.exceptions import NotFoundError
from src.modules.ncf.registry import get_ncf_type, list_ncf_types
from src.modules.ncf.schemas import (
    ExpirationAlert,
    NCFAllocateRequest,
    NCFAllocateResponse,
    NCFBatchCreate,
    NCFBatchResponse,
    NCFBatchUpdate,
    NCFCheckRequest,
    NCFCheckResult,
    NCFIssuanceResponse,
    NCFPreviewResponse,
    NCFTypeResponse,
    UsageAlert,
)
from src.modules.ncf.service import NCFService
from src.shared.schemas import SuccessResponse

router = APIRouter(prefix="/ncf", tags=["NCF Sequences"])


# --- Type Endpoints ---

@router.get("/types", response_model=SuccessResponse[list[NCFTypeResponse]])
async def get_ncf_types(current_user: CurrentUser):
    """List the DGII fiscal voucher types."""
    return SuccessResponse(
        data=[NCFTypeResponse.model_validate(t) for t in list_ncf_types()],
        message="NCF types retrieved",
    )


@router.get("/types/{code}", response_model=SuccessResponse[NCFTypeResponse])
async def get_ncf_type_by_code(code: str, current_user: CurrentUser):
    ncf_type = get_ncf_type(code)
    if ncf_type is None:
        raise NotFoundError("NCF type", code)
    return SuccessResponse(
        data=NCFTypeResponse.model_validate(ncf_type),
        message="NCF type retrieved",
    )


# --- Batch Endpoints ---

@router.get("/batches", response_model=SuccessResponse[list[NCFBatchResponse]])
async def list_batches(
    company_id: CurrentCompanyId,
    ncf_type: str | None = Query(None),
    include_inactive: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    """List the company's NCF batches with usage and expiration figures."""
    service = NCFService(db)
    batches = await service.list_batches(
        company_id, ncf_type=ncf_type, include_inactive=include_inactive
    )
    today = service.today()
    return SuccessResponse(
        data=[service.to_response(b, today) for b in batches],
        message="NCF batches retrieved",
    )


@router.post("/batches", response_model=SuccessResponse[NCFBatchResponse], status_code=201)
async def create_batch(
    data: NCFBatchCreate,
    current_user: FiscalManagerUser,
    company_id: CurrentCompanyId,
    db: AsyncSession = Depends(get_db),
):
    """
    Register an NCF range authorized by DGII.

    B01, B14 and B15 ranges require an expiration date.
    """
    service = NCFService(db)
    batch = await service.create_batch(company_id, data, created_by_id=current_user.id)
    return SuccessResponse(
        data=service.to_response(batch),
        message="NCF batch created",
    )


@router.get("/batches/{batch_id}", response_model=SuccessResponse[NCFBatchResponse])
async def get_batch(
    batch_id: int,
    company_id: CurrentCompanyId,
    db: AsyncSession = Depends(get_db),
):
    service = NCFService(db)
    batch = await service.get_batch(batch_id, company_id)
    return SuccessResponse(
        data=service.to_response(batch),
        message="NCF batch retrieved",
    )


@router.patch("/batches/{batch_id}", response_model=SuccessResponse[NCFBatchResponse])
async def update_batch(
    batch_id: int,
    data: NCFBatchUpdate,
    current_user: FiscalManagerUser,
    company_id: CurrentCompanyId,
    db: AsyncSession = Depends(get_db),
):
    """Extend or shrink the range, toggle activation, or change the expiration date."""
    service = NCFService(db)
    batch = await service.update_batch(batch_id, company_id, data, updated_by_id=current_user.id)
    return SuccessResponse(
        data=service.to_response(batch),
        message="NCF batch updated",
    )


@router.delete("/batches/{batch_id}", response_model=SuccessResponse[NCFBatchResponse])
async def delete_batch(
    batch_id: int,
    current_user: AdminUser,
    company_id: CurrentCompanyId,
    db: AsyncSession = Depends(get_db),
):
    """Delete a batch. Already issued NCFs are not affected."""
    service = NCFService(db)
    batch = await service.delete_batch(batch_id, company_id, deleted_by_id=current_user.id)
    return SuccessResponse(
        data=service.to_response(batch),
        message="NCF batch deleted",
    )


@router.get(
    "/batches/{batch_id}/issuances",
    response_model=SuccessResponse[list[NCFIssuanceResponse]],
)
async def list_batch_issuances(
    batch_id: int,
    company_id: CurrentCompanyId,
    db: AsyncSession = Depends(get_db),
):
    issuances = await NCFService(db).list_issuances(batch_id, company_id)
    return SuccessResponse(
        data=[NCFIssuanceResponse.model_validate(i) for i in issuances],
        message="NCF issuances retrieved",
    )


@router.get(
    "/batches/{batch_id}/history",
    response_model=SuccessResponse[list[AuditLogResponse]],
)
async def get_batch_history(
    batch_id: int,
    current_user: FiscalManagerUser,
    company_id: CurrentCompanyId,
    db: AsyncSession = Depends(get_db),
):
    """Who registered, edited or issued from this batch, newest first."""
    entries = await NCFService(db).get_batch_history(batch_id, company_id)
    return SuccessResponse(
        data=[AuditLogResponse.model_validate(e) for e in entries],
        message="NCF batch history retrieved",
    )


# --- Allocation Endpoints ---

@router.post("/allocate", response_model=SuccessResponse[NCFAllocateResponse], status_code=201)
async def allocate_ncf(
    data: NCFAllocateRequest,
    current_user: CurrentUser,
    company_id: CurrentCompanyId,
    db: AsyncSession = Depends(get_db),
):
    """
    Issue the next NCF of a type.

    Fails with 409 when the type has no usable batch (exhausted or expired);
    the document being issued must not be saved in that case.
    """
    issuance = await NCFService(db).allocate(
        company_id,
        data.ncf_type,
        issued_by_id=current_user.id,
        document_reference=data.document_reference,
    )
    return SuccessResponse(
        data=NCFAllocateResponse(
            ncf=issuance.ncf,
            ncf_type=issuance.ncf_type,
            sequence_number=issuance.sequence_number,
            batch_id=issuance.batch_id,
        ),
        message="NCF issued",
    )


@router.get("/preview", response_model=SuccessResponse[NCFPreviewResponse])
async def preview_ncf(
    company_id: CurrentCompanyId,
    ncf_type: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Show the next NCF of a type without issuing it."""
    code = ncf_type.strip().upper()
    next_ncf = await NCFService(db).preview_next(company_id, code)
    return SuccessResponse(
        data=NCFPreviewResponse(ncf_type=code, next_ncf=next_ncf),
        message="NCF preview" if next_ncf else "No NCF batch available",
    )


@router.post("/validate", response_model=SuccessResponse[NCFCheckResult])
async def validate_ncf(
    data: NCFCheckRequest,
    company_id: CurrentCompanyId,
    db: AsyncSession = Depends(get_db),
):
    """Check an NCF received from a third party (e.g. a vendor invoice)."""
    result = await NCFService(db).check_ncf(company_id, data.ncf, data.expected_type)
    return SuccessResponse(
        data=result,
        message="NCF is valid" if result.is_valid else "NCF is not valid",
    )


# --- Alert Endpoints ---

@router.get("/alerts/usage", response_model=SuccessResponse[list[UsageAlert]])
async def get_usage_alerts(
    company_id: CurrentCompanyId,
    db: AsyncSession = Depends(get_db),
):
    alerts = await NCFService(db).get_usage_alerts(company_id)
    return SuccessResponse(data=alerts, message="NCF usage alerts retrieved")


@router.get("/alerts/expiration", response_model=SuccessResponse[list[ExpirationAlert]])
async def get_expiration_alerts(
    company_id: CurrentCompanyId,
    horizon_days: int | None = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
):
    alerts = await NCFService(db).get_expiration_alerts(company_id, horizon_days=horizon_days)
    return SuccessResponse(data=alerts, message="NCF expiration alerts retrieved")
