"""Appointment endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import AdminPrincipal, CurrentPrincipal, DbSession, OptionalPrincipal
from app.core.middleware import booking_limiter
from app.domain.rendezvous_state import AdminVerdict, RendezvousStatus
from app.models.rendezvous import Rendezvous
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
from app.services.rendezvous_service import rendezvous_service

router = APIRouter()


@router.post(
    "",
    response_model=RendezvousResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_limiter)],
)
async def book_rendezvous(
    data: RendezvousCreate,
    db: DbSession,
    principal: OptionalPrincipal,
) -> Rendezvous:
    """Book a consulting appointment."""
    return await rendezvous_service.book(db, data, actor=principal)


@router.get("", response_model=RendezvousListResponse)
async def list_rendezvous(
    db: DbSession,
    principal: AdminPrincipal,
    status_filter: RendezvousStatus | None = Query(default=None, alias="status"),
    day: date | None = Query(default=None, alias="date"),
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> RendezvousListResponse:
    """List all appointments (admin)."""
    items, total = await rendezvous_service.list_all(
        db, principal, status=status_filter, day=day, search=search, page=page, page_size=page_size
    )
    return RendezvousListResponse(
        items=[RendezvousResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/mine", response_model=RendezvousListResponse)
async def list_my_rendezvous(
    db: DbSession,
    principal: CurrentPrincipal,
    status_filter: RendezvousStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> RendezvousListResponse:
    """List the current user's appointments."""
    items, total = await rendezvous_service.list_mine(
        db, principal, status=status_filter, page=page, page_size=page_size
    )
    return RendezvousListResponse(
        items=[RendezvousResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/occupied-slots", response_model=SlotListResponse)
async def occupied_slots(
    db: DbSession,
    day: Annotated[date, Query(alias="date")],
) -> SlotListResponse:
    """Slots already held on a date."""
    return SlotListResponse(date=day, slots=await rendezvous_service.list_occupied_slots(db, day))


@router.get("/available-slots", response_model=SlotListResponse)
async def available_slots(
    db: DbSession,
    day: Annotated[date, Query(alias="date")],
) -> SlotListResponse:
    """Slots still bookable on a date."""
    return SlotListResponse(date=day, slots=await rendezvous_service.list_available_slots(db, day))


@router.get("/available-dates", response_model=AvailableDatesResponse)
async def available_dates(db: DbSession) -> AvailableDatesResponse:
    """Upcoming dates with at least one free slot."""
    return AvailableDatesResponse(dates=await rendezvous_service.list_available_dates(db))


@router.get("/{rendezvous_id}", response_model=RendezvousResponse)
async def get_rendezvous(
    rendezvous_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
) -> Rendezvous:
    """Get an appointment by ID."""
    return await rendezvous_service.get(db, rendezvous_id, principal)


@router.put("/{rendezvous_id}", response_model=RendezvousResponse)
async def reschedule_rendezvous(
    rendezvous_id: UUID,
    data: RendezvousReschedule,
    db: DbSession,
    principal: CurrentPrincipal,
) -> Rendezvous:
    """Move an appointment to another date/slot."""
    return await rendezvous_service.reschedule(db, rendezvous_id, data, principal)


@router.post("/{rendezvous_id}/confirm", response_model=RendezvousResponse)
async def confirm_rendezvous(
    rendezvous_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
) -> Rendezvous:
    """Confirm a pending appointment."""
    return await rendezvous_service.confirm(db, rendezvous_id, principal)


@router.post("/{rendezvous_id}/complete", response_model=CompleteRendezvousResponse)
async def complete_rendezvous(
    rendezvous_id: UUID,
    data: RendezvousComplete,
    db: DbSession,
    principal: CurrentPrincipal,
) -> CompleteRendezvousResponse:
    """Complete a confirmed appointment with a verdict (admin)."""
    rendezvous = await rendezvous_service.complete(db, rendezvous_id, data.admin_verdict, principal)
    return CompleteRendezvousResponse(
        rendezvous=RendezvousResponse.model_validate(rendezvous),
        procedure_eligible=rendezvous.admin_verdict == AdminVerdict.FAVORABLE.value,
    )


@router.post("/{rendezvous_id}/cancel", response_model=RendezvousResponse)
async def cancel_rendezvous(
    rendezvous_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
    data: RendezvousCancel | None = None,
) -> Rendezvous:
    """Cancel an appointment."""
    reason = data.reason if data else None
    return await rendezvous_service.cancel(db, rendezvous_id, principal, reason=reason)


@router.delete("/{rendezvous_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rendezvous(
    rendezvous_id: UUID,
    db: DbSession,
    principal: AdminPrincipal,
) -> None:
    """Permanently delete an appointment (admin)."""
    await rendezvous_service.delete(db, rendezvous_id, principal)
