"""Appointment lifecycle service.

Every public method starts with a capability check against the caller's
``Principal`` and only then applies the scheduling and status rules from
``app.domain.rendezvous_state``.
"""

import logging
from datetime import UTC, date, datetime, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.core.exceptions import (
    CancellationWindowError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionError,
    SlotOccupiedError,
    ValidationError,
)
from app.core.logging_config import mask_email
from app.core.permissions import Permission, Principal, ensure_owner_or_admin, ensure_permission
from app.database import after_commit
from app.domain.rendezvous_state import (
    ACTIVE_STATUSES,
    RendezvousStatus,
    appointment_datetime,
    assert_rendezvous_transition,
    can_client_cancel,
    generate_time_slots,
    is_closed_day,
    parse_verdict,
    require_other_override,
    validate_booking_datetime,
    validate_time_slot,
)
from app.models.procedure import Procedure
from app.models.rendezvous import Rendezvous
from app.schemas.rendezvous import RendezvousCreate, RendezvousReschedule
from app.services.notification_service import notification_service

logger = logging.getLogger(__name__)

ACTIVE_VALUES = tuple(s.value for s in ACTIVE_STATUSES)

CANCELLED_BY_ADMIN_REASON = "Annulé par l'administrateur"
CANCELLED_BY_CLIENT_REASON = "Annulé par l'utilisateur"


def business_tz() -> ZoneInfo:
    return ZoneInfo(settings.business_timezone)


def _slot_grid() -> list[str]:
    return generate_time_slots(settings.opening_time, settings.last_slot_time, settings.slot_minutes)


def _normalise_slot(time_slot: str) -> str:
    return validate_time_slot(
        time_slot, settings.opening_time, settings.last_slot_time, settings.slot_minutes
    )


class RendezvousService:
    """Service for the appointment lifecycle."""

    async def book(
        self,
        db: AsyncSession,
        data: RendezvousCreate,
        actor: Principal | None = None,
        now: datetime | None = None,
    ) -> Rendezvous:
        """Book a new pending appointment.

        Anonymous bookings are accepted (``actor`` is None); an authenticated
        client's booking is linked to their account.

        Raises:
            ValidationError: Bad slot, past date, closed day, missing override,
                or the client already holds an active appointment
            SlotOccupiedError: The slot is held by another active appointment
        """
        if actor is not None:
            ensure_permission(actor, Permission.BOOK_RENDEZVOUS)
        now = now or datetime.now(UTC)

        time_slot = _normalise_slot(data.time_slot)
        destination_other = require_other_override(
            data.destination.value, data.destination_other, "destination"
        )
        field_of_study_other = require_other_override(
            data.field_of_study.value, data.field_of_study_other, "filière"
        )
        validate_booking_datetime(
            data.date,
            time_slot,
            now,
            business_tz(),
            settings.closed_weekdays,
            settings.public_holidays,
        )

        if await self._slot_taken(db, data.date, time_slot):
            raise SlotOccupiedError(data.date.isoformat(), time_slot)

        email = data.email.lower()
        if await self._has_active_rendezvous(db, email):
            raise ValidationError(
                "Vous avez déjà un rendez-vous en cours. "
                "Veuillez attendre qu'il soit terminé ou annulé avant d'en réserver un autre."
            )

        rendezvous = Rendezvous(
            user_id=actor.id if actor is not None and not actor.is_admin else None,
            first_name=data.first_name,
            last_name=data.last_name,
            email=email,
            phone=data.phone.strip(),
            destination=data.destination.value,
            destination_other=destination_other,
            education_level=data.education_level.value,
            field_of_study=data.field_of_study.value,
            field_of_study_other=field_of_study_other,
            date=data.date,
            time_slot=time_slot,
            status=RendezvousStatus.PENDING.value,
        )
        db.add(rendezvous)
        await self._flush(db, rendezvous)

        logger.info(
            f"Rendezvous {rendezvous.id} booked for {mask_email(email)} "
            f"on {rendezvous.date} at {time_slot}"
        )
        after_commit(db, notification_service.send_rendezvous_status_update, rendezvous)
        return rendezvous

    async def confirm(
        self,
        db: AsyncSession,
        rendezvous_id: UUID,
        actor: Principal,
        now: datetime | None = None,
    ) -> Rendezvous:
        """Confirm a pending appointment (owner or admin)."""
        rendezvous = await self._get_for_actor(
            db, rendezvous_id, actor, Permission.CONFIRM_OWN_RENDEZVOUS
        )
        assert_rendezvous_transition(rendezvous.status, RendezvousStatus.CONFIRMED)

        now = now or datetime.now(UTC)
        if appointment_datetime(rendezvous.date, rendezvous.time_slot, business_tz()) <= now:
            raise ValidationError("Impossible de confirmer un rendez-vous dont la date est passée")

        rendezvous.status = RendezvousStatus.CONFIRMED.value
        rendezvous.confirmed_at = now
        await self._flush(db, rendezvous)

        logger.info(f"Rendezvous {rendezvous.id} confirmed by {actor.role.value}")
        after_commit(db, notification_service.send_rendezvous_status_update, rendezvous)
        return rendezvous

    async def complete(
        self,
        db: AsyncSession,
        rendezvous_id: UUID,
        verdict: str | None,
        actor: Principal,
        now: datetime | None = None,
    ) -> Rendezvous:
        """Close a confirmed appointment with the administrator's verdict."""
        ensure_permission(actor, Permission.COMPLETE_RENDEZVOUS)
        parsed = parse_verdict(verdict)

        rendezvous = await self._get_rendezvous(db, rendezvous_id)
        assert_rendezvous_transition(rendezvous.status, RendezvousStatus.COMPLETED)

        rendezvous.status = RendezvousStatus.COMPLETED.value
        rendezvous.admin_verdict = parsed.value
        rendezvous.completed_at = now or datetime.now(UTC)
        await self._flush(db, rendezvous)

        logger.info(f"Rendezvous {rendezvous.id} completed with verdict {parsed.value}")
        after_commit(db, notification_service.send_rendezvous_status_update, rendezvous)
        return rendezvous

    async def cancel(
        self,
        db: AsyncSession,
        rendezvous_id: UUID,
        actor: Principal,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Rendezvous:
        """Cancel an active appointment.

        Clients may only cancel strictly more than the configured cutoff
        before the start time; administrators may always cancel.
        """
        rendezvous = await self._get_for_actor(
            db, rendezvous_id, actor, Permission.CANCEL_OWN_RENDEZVOUS
        )
        assert_rendezvous_transition(rendezvous.status, RendezvousStatus.CANCELLED)

        now = now or datetime.now(UTC)
        if not actor.is_admin:
            starts_at = appointment_datetime(rendezvous.date, rendezvous.time_slot, business_tz())
            allowed, _ = can_client_cancel(starts_at, now, settings.cancellation_cutoff_hours)
            if not allowed:
                raise CancellationWindowError(settings.cancellation_cutoff_hours)

        default_reason = CANCELLED_BY_ADMIN_REASON if actor.is_admin else CANCELLED_BY_CLIENT_REASON
        rendezvous.status = RendezvousStatus.CANCELLED.value
        rendezvous.cancelled_by = "admin" if actor.is_admin else "client"
        rendezvous.cancellation_reason = (reason or "").strip() or default_reason
        rendezvous.cancelled_at = now
        await self._flush(db, rendezvous)

        logger.info(f"Rendezvous {rendezvous.id} cancelled by {rendezvous.cancelled_by}")
        after_commit(db, notification_service.send_rendezvous_status_update, rendezvous)
        return rendezvous

    async def reschedule(
        self,
        db: AsyncSession,
        rendezvous_id: UUID,
        data: RendezvousReschedule,
        actor: Principal,
        now: datetime | None = None,
    ) -> Rendezvous:
        """Move an active appointment to another date and slot."""
        rendezvous = await self._get_for_actor(
            db, rendezvous_id, actor, Permission.RESCHEDULE_OWN_RENDEZVOUS
        )
        current = RendezvousStatus(rendezvous.status)
        if current not in ACTIVE_STATUSES:
            raise InvalidTransitionError(
                f"Un rendez-vous « {current.label.lower()} » ne peut plus être modifié",
                current=current.value,
            )

        time_slot = _normalise_slot(data.time_slot)
        validate_booking_datetime(
            data.date,
            time_slot,
            now or datetime.now(UTC),
            business_tz(),
            settings.closed_weekdays,
            settings.public_holidays,
        )
        if await self._slot_taken(db, data.date, time_slot, exclude_id=rendezvous.id):
            raise SlotOccupiedError(data.date.isoformat(), time_slot)

        previous = f"{rendezvous.date} {rendezvous.time_slot}"
        rendezvous.date = data.date
        rendezvous.time_slot = time_slot
        await self._flush(db, rendezvous)

        logger.info(f"Rendezvous {rendezvous.id} moved from {previous} to {data.date} {time_slot}")
        return rendezvous

    async def get(self, db: AsyncSession, rendezvous_id: UUID, actor: Principal) -> Rendezvous:
        return await self._get_for_actor(db, rendezvous_id, actor, Permission.VIEW_OWN_RENDEZVOUS)

    async def list_mine(
        self,
        db: AsyncSession,
        actor: Principal,
        status: RendezvousStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Rendezvous], int]:
        """Appointments linked to the caller's account or e-mail."""
        ensure_permission(actor, Permission.VIEW_OWN_RENDEZVOUS)
        query = select(Rendezvous).where(
            or_(Rendezvous.user_id == actor.id, Rendezvous.email == actor.email.lower())
        )
        if status is not None:
            query = query.where(Rendezvous.status == status.value)
        return await self._paginate(db, query, page, page_size)

    async def list_all(
        self,
        db: AsyncSession,
        actor: Principal,
        status: RendezvousStatus | None = None,
        day: date | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Rendezvous], int]:
        """Admin listing with optional status, date and free-text filters."""
        ensure_permission(actor, Permission.VIEW_ALL_RENDEZVOUS)
        query = select(Rendezvous)
        if status is not None:
            query = query.where(Rendezvous.status == status.value)
        if day is not None:
            query = query.where(Rendezvous.date == day)
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            query = query.where(
                or_(
                    func.lower(Rendezvous.first_name).like(pattern),
                    func.lower(Rendezvous.last_name).like(pattern),
                    Rendezvous.email.like(pattern),
                )
            )
        return await self._paginate(db, query, page, page_size)

    async def delete(self, db: AsyncSession, rendezvous_id: UUID, actor: Principal) -> None:
        """Physically remove an appointment that no procedure refers to."""
        ensure_permission(actor, Permission.DELETE_RENDEZVOUS)
        rendezvous = await self._get_rendezvous(db, rendezvous_id)

        result = await db.execute(
            select(func.count()).select_from(Procedure).where(Procedure.rendezvous_id == rendezvous.id)
        )
        if result.scalar():
            raise PreconditionError(
                "Ce rendez-vous est rattaché à une procédure et ne peut pas être supprimé"
            )

        await db.delete(rendezvous)
        await db.flush()
        logger.info(f"Rendezvous {rendezvous_id} deleted by admin {actor.id}")

    async def list_confirmed_on(self, db: AsyncSession, day: date) -> list[Rendezvous]:
        """Confirmed appointments on ``day``, used by the reminder job."""
        result = await db.execute(
            select(Rendezvous)
            .where(
                Rendezvous.date == day,
                Rendezvous.status == RendezvousStatus.CONFIRMED.value,
            )
            .order_by(Rendezvous.time_slot)
        )
        return list(result.scalars().all())

    # ==================== AVAILABILITY ====================

    async def list_occupied_slots(self, db: AsyncSession, day: date) -> list[str]:
        """Slots on ``day`` held by a pending or confirmed appointment."""
        result = await db.execute(
            select(Rendezvous.time_slot).where(
                Rendezvous.date == day,
                Rendezvous.status.in_(ACTIVE_VALUES),
            )
        )
        return sorted(set(result.scalars().all()))

    async def list_available_slots(
        self, db: AsyncSession, day: date, now: datetime | None = None
    ) -> list[str]:
        """Free slots on ``day``: the grid minus occupied, past and closed."""
        occupied = set(await self.list_occupied_slots(db, day))
        return self._free_slots(day, occupied, now or datetime.now(UTC))

    async def list_available_dates(
        self, db: AsyncSession, now: datetime | None = None, days: int | None = None
    ) -> list[date]:
        """Upcoming open dates that still have at least one free slot."""
        now = now or datetime.now(UTC)
        days = days or settings.booking_horizon_days
        start = now.astimezone(business_tz()).date()
        end = start + timedelta(days=days - 1)

        result = await db.execute(
            select(Rendezvous.date, Rendezvous.time_slot).where(
                Rendezvous.date >= start,
                Rendezvous.date <= end,
                Rendezvous.status.in_(ACTIVE_VALUES),
            )
        )
        occupied: dict[date, set[str]] = {}
        for day, slot in result.all():
            occupied.setdefault(day, set()).add(slot)

        available = []
        for offset in range(days):
            day = start + timedelta(days=offset)
            if self._free_slots(day, occupied.get(day, set()), now):
                available.append(day)
        return available

    def _free_slots(self, day: date, occupied: set[str], now: datetime) -> list[str]:
        tz = business_tz()
        local_now = now.astimezone(tz)
        if day < local_now.date():
            return []
        if is_closed_day(day, settings.closed_weekdays, settings.public_holidays):
            return []
        free = [slot for slot in _slot_grid() if slot not in occupied]
        if day == local_now.date():
            free = [slot for slot in free if appointment_datetime(day, slot, tz) > local_now]
        return free

    # ==================== HELPERS ====================

    async def _slot_taken(
        self,
        db: AsyncSession,
        day: date,
        time_slot: str,
        exclude_id: UUID | None = None,
    ) -> bool:
        query = select(Rendezvous.id).where(
            Rendezvous.date == day,
            Rendezvous.time_slot == time_slot,
            Rendezvous.status.in_(ACTIVE_VALUES),
        )
        if exclude_id is not None:
            query = query.where(Rendezvous.id != exclude_id)
        result = await db.execute(query.limit(1))
        return result.scalar_one_or_none() is not None

    async def _has_active_rendezvous(self, db: AsyncSession, email: str) -> bool:
        result = await db.execute(
            select(Rendezvous.id)
            .where(Rendezvous.email == email, Rendezvous.status.in_(ACTIVE_VALUES))
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _get_rendezvous(self, db: AsyncSession, rendezvous_id: UUID) -> Rendezvous:
        """Get appointment by ID or raise NotFoundError."""
        result = await db.execute(select(Rendezvous).where(Rendezvous.id == rendezvous_id))
        rendezvous = result.scalar_one_or_none()
        if not rendezvous:
            raise NotFoundError("Rendez-vous", str(rendezvous_id))
        return rendezvous

    async def _get_for_actor(
        self,
        db: AsyncSession,
        rendezvous_id: UUID,
        actor: Principal,
        own_permission: Permission,
    ) -> Rendezvous:
        if actor is None or not actor.is_admin:
            ensure_permission(actor, own_permission)
        rendezvous = await self._get_rendezvous(db, rendezvous_id)
        ensure_owner_or_admin(actor, rendezvous.user_id, rendezvous.email, own_permission)
        return rendezvous

    async def _flush(self, db: AsyncSession, rendezvous: Rendezvous) -> None:
        """Flush pending writes, mapping lost races to domain errors."""
        # Attributes are expired once the flush fails
        rendezvous_id, day, time_slot = rendezvous.id, rendezvous.date, rendezvous.time_slot
        try:
            await db.flush()
        except IntegrityError as e:
            logger.warning(f"Slot conflict on {day} {time_slot}: {e.orig}")
            raise SlotOccupiedError(day.isoformat(), time_slot) from e
        except StaleDataError as e:
            logger.warning(f"Concurrent update on rendezvous {rendezvous_id}")
            raise InvalidTransitionError(
                "Ce rendez-vous a été modifié entre-temps, veuillez réessayer"
            ) from e

    async def _paginate(self, db: AsyncSession, query, page: int, page_size: int):
        count_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar() or 0

        offset = (page - 1) * page_size
        query = query.order_by(Rendezvous.date.desc(), Rendezvous.time_slot.desc())
        result = await db.execute(query.offset(offset).limit(page_size))
        return list(result.scalars().all()), total


rendezvous_service = RendezvousService()
