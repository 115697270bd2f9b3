"""Pydantic schemas for API validation."""

from app.schemas.procedure import (
    ProcedureCreate,
    ProcedureDelete,
    ProcedureListResponse,
    ProcedureOverview,
    ProcedureReject,
    ProcedureResponse,
    ProcedureStepResponse,
    StepUpdate,
)
from app.schemas.rendezvous import (
    AvailableDatesResponse,
    CompleteRendezvousResponse,
    RendezvousCancel,
    RendezvousComplete,
    RendezvousCreate,
    RendezvousListResponse,
    RendezvousReschedule,
    RendezvousResponse,
    SlotListResponse,
)

__all__ = [
    # Rendezvous
    "RendezvousCreate",
    "RendezvousReschedule",
    "RendezvousComplete",
    "RendezvousCancel",
    "RendezvousResponse",
    "RendezvousListResponse",
    "SlotListResponse",
    "AvailableDatesResponse",
    "CompleteRendezvousResponse",
    # Procedure
    "ProcedureCreate",
    "StepUpdate",
    "ProcedureReject",
    "ProcedureDelete",
    "ProcedureResponse",
    "ProcedureStepResponse",
    "ProcedureListResponse",
    "ProcedureOverview",
]
