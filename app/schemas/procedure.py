"""Procedure-related Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.domain.procedure_state import ProcedureStatus, StepName, StepStatus


class ProcedureCreate(BaseModel):
    """Schema for opening a procedure from a completed appointment."""

    rendezvous_id: UUID


class StepUpdate(BaseModel):
    """Schema for changing the status of one step; ``status`` is parsed by the service."""

    status: str
    rejection_reason: str | None = Field(None, max_length=1000)


class ProcedureReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class ProcedureDelete(BaseModel):
    reason: str | None = Field(None, max_length=500)


class ProcedureStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: StepName
    position: int
    status: StepStatus
    rejection_reason: str | None
    completed_at: datetime | None
    updated_at: datetime


class ProcedureResponse(BaseModel):
    """Schema for procedure response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    rendezvous_id: UUID
    user_id: UUID | None

    # Applicant
    first_name: str
    last_name: str
    email: str
    phone: str | None
    destination: str
    field_of_study: str | None
    education_level: str | None

    # Status
    status: ProcedureStatus
    rejection_reason: str | None
    steps: list[ProcedureStepResponse]

    # Timestamps
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ProcedureListResponse(BaseModel):
    """Paginated procedure list."""

    items: list[ProcedureResponse]
    total: int
    page: int
    page_size: int


class ProcedureOverview(BaseModel):
    """Procedure counts for the admin dashboard."""

    total: int
    by_status: dict[str, int]
    by_destination: dict[str, int]
    by_step: dict[str, dict[str, int]]
