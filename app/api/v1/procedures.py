"""Admission procedure endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.api.deps import AdminPrincipal, CurrentPrincipal, DbSession
from app.domain.procedure_state import ProcedureStatus
from app.models.procedure import Procedure
from app.schemas.procedure import (
    ProcedureCreate,
    ProcedureDelete,
    ProcedureListResponse,
    ProcedureOverview,
    ProcedureReject,
    ProcedureResponse,
    StepUpdate,
)
from app.services.procedure_service import procedure_service

router = APIRouter()


@router.post("", response_model=ProcedureResponse, status_code=status.HTTP_201_CREATED)
async def create_procedure(
    data: ProcedureCreate,
    db: DbSession,
    principal: AdminPrincipal,
) -> Procedure:
    """Open a procedure from a completed, favorable appointment (admin)."""
    return await procedure_service.create_from_rendezvous(db, data.rendezvous_id, principal)


@router.get("", response_model=ProcedureListResponse)
async def list_procedures(
    db: DbSession,
    principal: AdminPrincipal,
    status_filter: ProcedureStatus | None = Query(default=None, alias="status"),
    email: str | None = Query(default=None, max_length=255),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ProcedureListResponse:
    """List all procedures (admin)."""
    items, total = await procedure_service.list_all(
        db, principal, status=status_filter, email=email, page=page, page_size=page_size
    )
    return ProcedureListResponse(
        items=[ProcedureResponse.model_validate(p) for p in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/mine", response_model=ProcedureListResponse)
async def list_my_procedures(
    db: DbSession,
    principal: CurrentPrincipal,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ProcedureListResponse:
    items, total = await procedure_service.list_mine(db, principal, page=page, page_size=page_size)
    return ProcedureListResponse(
        items=[ProcedureResponse.model_validate(p) for p in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/overview", response_model=ProcedureOverview)
async def procedure_overview(db: DbSession, principal: AdminPrincipal) -> dict:
    """Dashboard counts (admin)."""
    return await procedure_service.overview(db, principal)


@router.get("/{procedure_id}", response_model=ProcedureResponse)
async def get_procedure(
    procedure_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
) -> Procedure:
    return await procedure_service.get(db, procedure_id, principal)


@router.put("/{procedure_id}/steps/{step_name}", response_model=ProcedureResponse)
async def update_step(
    procedure_id: UUID,
    step_name: str,
    data: StepUpdate,
    db: DbSession,
    principal: AdminPrincipal,
) -> Procedure:
    """Change the status of one step (admin)."""
    return await procedure_service.update_step(
        db, procedure_id, step_name, data.status, principal, reason=data.rejection_reason
    )


@router.post("/{procedure_id}/reject", response_model=ProcedureResponse)
async def reject_procedure(
    procedure_id: UUID,
    data: ProcedureReject,
    db: DbSession,
    principal: AdminPrincipal,
) -> Procedure:
    """Reject a procedure (admin)."""
    return await procedure_service.reject(db, procedure_id, data.reason, principal)


@router.delete("/{procedure_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_procedure(
    procedure_id: UUID,
    db: DbSession,
    principal: AdminPrincipal,
    data: ProcedureDelete | None = None,
) -> None:
    """Soft-delete a procedure (admin)."""
    await procedure_service.soft_delete(db, procedure_id, principal, reason=data.reason if data else None)
