"""Admission procedure service.

A procedure is opened from a completed, favorable appointment and walks
through three gated steps. Soft-deleted procedures are invisible to every
read and write below.
"""

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from app.core.logging_config import mask_email
from app.core.permissions import Permission, Principal, ensure_owner_or_admin, ensure_permission
from app.database import after_commit
from app.domain.procedure_state import (
    OPEN_STEP_STATUSES,
    STEP_ORDER,
    ProcedureStatus,
    StepName,
    StepStatus,
    all_steps_completed,
    assert_procedure_transition,
    assert_step_update,
    is_noop_terminal_write,
    parse_step_name,
    parse_step_status,
)
from app.domain.rendezvous_state import AdminVerdict, RendezvousStatus
from app.models.procedure import Procedure, ProcedureStep
from app.models.rendezvous import Rendezvous
from app.services.notification_service import notification_service

logger = logging.getLogger(__name__)

DEFAULT_DELETION_REASON = "Supprimée par l'administrateur"


class ProcedureService:
    """Service for the procedure step-gate."""

    async def create_from_rendezvous(
        self,
        db: AsyncSession,
        rendezvous_id: UUID,
        actor: Principal,
    ) -> Procedure:
        """Open a procedure from a completed appointment with a favorable verdict.

        Raises:
            NotFoundError: Appointment does not exist
            PreconditionError: Appointment not completed/favorable, or a
                live procedure already exists for it
        """
        ensure_permission(actor, Permission.MANAGE_PROCEDURES)

        result = await db.execute(select(Rendezvous).where(Rendezvous.id == rendezvous_id))
        rendezvous = result.scalar_one_or_none()
        if not rendezvous:
            raise NotFoundError("Rendez-vous", str(rendezvous_id))

        if (
            rendezvous.status != RendezvousStatus.COMPLETED.value
            or rendezvous.admin_verdict != AdminVerdict.FAVORABLE.value
        ):
            raise PreconditionError(
                "Une procédure ne peut être créée que pour un rendez-vous terminé "
                "avec un avis favorable"
            )

        existing = await db.execute(
            select(Procedure.id).where(
                Procedure.rendezvous_id == rendezvous.id,
                Procedure.is_deleted.is_(False),
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise PreconditionError("Une procédure existe déjà pour ce rendez-vous")

        procedure = Procedure(
            rendezvous_id=rendezvous.id,
            user_id=rendezvous.user_id,
            first_name=rendezvous.first_name,
            last_name=rendezvous.last_name,
            email=rendezvous.email,
            phone=rendezvous.phone,
            destination=rendezvous.effective_destination,
            field_of_study=rendezvous.effective_field_of_study,
            education_level=rendezvous.education_level,
            status=ProcedureStatus.IN_PROGRESS.value,
            steps=[
                ProcedureStep(name=name.value, position=position, status=StepStatus.PENDING.value)
                for position, name in enumerate(STEP_ORDER)
            ],
        )
        db.add(procedure)
        await db.flush()

        logger.info(
            f"Procedure {procedure.id} created from rendezvous {rendezvous.id} "
            f"for {mask_email(procedure.email)}"
        )
        after_commit(db, notification_service.send_procedure_created, procedure)
        return procedure

    async def update_step(
        self,
        db: AsyncSession,
        procedure_id: UUID,
        step_name: str | StepName,
        new_status: str | StepStatus,
        actor: Principal,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Procedure:
        """Change one step's status.

        Writing the current status onto a terminal step is a no-op. When the
        last step completes, the procedure completes in the same flush.
        """
        ensure_permission(actor, Permission.MANAGE_PROCEDURES)
        step = parse_step_name(step_name)
        target = parse_step_status(new_status)

        procedure = await self._get_procedure(db, procedure_id)
        statuses = {StepName(s.name): StepStatus(s.status) for s in procedure.steps}
        if is_noop_terminal_write(statuses[step], target):
            return procedure

        current_status = ProcedureStatus(procedure.status)
        if current_status in (ProcedureStatus.REJECTED, ProcedureStatus.CANCELLED):
            raise InvalidTransitionError(
                f"La procédure est {current_status.label.lower()}, ses étapes ne peuvent plus changer",
                current=current_status.value,
            )

        assert_step_update(step, target, statuses, reason)

        now = now or datetime.now(UTC)
        row = procedure.step(step.value)
        row.status = target.value
        row.rejection_reason = reason.strip() if target == StepStatus.REJECTED else None
        row.completed_at = now if target == StepStatus.COMPLETED else None
        row.updated_at = now

        statuses[step] = target
        if all_steps_completed(statuses):
            assert_procedure_transition(procedure.status, ProcedureStatus.COMPLETED)
            procedure.status = ProcedureStatus.COMPLETED.value
            procedure.completed_at = now
            logger.info(f"Procedure {procedure.id} completed: all steps done")
        # Bumps the version even when only a step row changed
        procedure.updated_at = now

        await self._flush(db, procedure)

        logger.info(f"Procedure {procedure.id} step {step.value} -> {target.value}")
        after_commit(db, notification_service.send_procedure_update, procedure, step)
        return procedure

    async def reject(
        self,
        db: AsyncSession,
        procedure_id: UUID,
        reason: str | None,
        actor: Principal,
    ) -> Procedure:
        """Reject an in-progress procedure. Steps keep their statuses."""
        ensure_permission(actor, Permission.MANAGE_PROCEDURES)
        if not reason or not reason.strip():
            raise ValidationError("La raison du refus est obligatoire")

        procedure = await self._get_procedure(db, procedure_id)
        assert_procedure_transition(procedure.status, ProcedureStatus.REJECTED)

        procedure.status = ProcedureStatus.REJECTED.value
        procedure.rejection_reason = reason.strip()
        await self._flush(db, procedure)

        logger.info(f"Procedure {procedure.id} rejected")
        after_commit(db, notification_service.send_procedure_update, procedure)
        return procedure

    async def soft_delete(
        self,
        db: AsyncSession,
        procedure_id: UUID,
        actor: Principal,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Procedure:
        """Flag a procedure deleted; an in-progress one is cancelled with its open steps."""
        ensure_permission(actor, Permission.MANAGE_PROCEDURES)
        procedure = await self._get_procedure(db, procedure_id)

        now = now or datetime.now(UTC)
        if procedure.status == ProcedureStatus.IN_PROGRESS.value:
            procedure.status = ProcedureStatus.CANCELLED.value
            for step in procedure.steps:
                if StepStatus(step.status) in OPEN_STEP_STATUSES:
                    step.status = StepStatus.CANCELLED.value
                    step.updated_at = now

        procedure.is_deleted = True
        procedure.deleted_at = now
        procedure.deletion_reason = (reason or "").strip() or DEFAULT_DELETION_REASON
        await self._flush(db, procedure)

        logger.info(f"Procedure {procedure.id} soft-deleted by admin {actor.id}")
        return procedure

    async def get(self, db: AsyncSession, procedure_id: UUID, actor: Principal) -> Procedure:
        if actor is None or not actor.is_admin:
            ensure_permission(actor, Permission.VIEW_OWN_PROCEDURE)
        procedure = await self._get_procedure(db, procedure_id)
        ensure_owner_or_admin(actor, procedure.user_id, procedure.email, Permission.VIEW_OWN_PROCEDURE)
        return procedure

    async def list_mine(
        self,
        db: AsyncSession,
        actor: Principal,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Procedure], int]:
        ensure_permission(actor, Permission.VIEW_OWN_PROCEDURE)
        query = select(Procedure).where(
            Procedure.is_deleted.is_(False),
            or_(Procedure.user_id == actor.id, Procedure.email == actor.email.lower()),
        )
        return await self._paginate(db, query, page, page_size)

    async def list_all(
        self,
        db: AsyncSession,
        actor: Principal,
        status: ProcedureStatus | None = None,
        email: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Procedure], int]:
        ensure_permission(actor, Permission.VIEW_ALL_PROCEDURES)
        query = select(Procedure).where(Procedure.is_deleted.is_(False))
        if status is not None:
            query = query.where(Procedure.status == status.value)
        if email:
            query = query.where(Procedure.email == email.strip().lower())
        return await self._paginate(db, query, page, page_size)

    async def overview(self, db: AsyncSession, actor: Principal) -> dict:
        """Counts of live procedures by status, destination and step status."""
        ensure_permission(actor, Permission.VIEW_ALL_PROCEDURES)
        live = Procedure.is_deleted.is_(False)

        by_status_rows = await db.execute(
            select(Procedure.status, func.count()).where(live).group_by(Procedure.status)
        )
        by_status = {s.value: 0 for s in ProcedureStatus}
        by_status.update({status: count for status, count in by_status_rows.all()})

        by_destination_rows = await db.execute(
            select(Procedure.destination, func.count()).where(live).group_by(Procedure.destination)
        )
        by_destination = dict(by_destination_rows.all())

        by_step_rows = await db.execute(
            select(ProcedureStep.name, ProcedureStep.status, func.count())
            .join(Procedure, ProcedureStep.procedure_id == Procedure.id)
            .where(live)
            .group_by(ProcedureStep.name, ProcedureStep.status)
        )
        by_step: dict[str, dict[str, int]] = {name.value: {} for name in STEP_ORDER}
        for name, status, count in by_step_rows.all():
            by_step.setdefault(name, {})[status] = count

        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_destination": by_destination,
            "by_step": by_step,
        }

    # ==================== HELPERS ====================

    async def _get_procedure(self, db: AsyncSession, procedure_id: UUID) -> Procedure:
        """Get a live procedure by ID or raise NotFoundError."""
        result = await db.execute(
            select(Procedure).where(Procedure.id == procedure_id, Procedure.is_deleted.is_(False))
        )
        procedure = result.scalar_one_or_none()
        if not procedure:
            raise NotFoundError("Procédure", str(procedure_id))
        return procedure

    async def _flush(self, db: AsyncSession, procedure: Procedure) -> None:
        procedure_id = procedure.id
        try:
            await db.flush()
        except StaleDataError as e:
            logger.warning(f"Concurrent update on procedure {procedure_id}")
            raise InvalidTransitionError(
                "Cette procédure a été modifiée entre-temps, veuillez réessayer"
            ) from e

    async def _paginate(self, db: AsyncSession, query, page: int, page_size: int):
        count_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar() or 0

        offset = (page - 1) * page_size
        query = query.order_by(Procedure.created_at.desc())
        result = await db.execute(query.offset(offset).limit(page_size))
        return list(result.scalars().all()), total


procedure_service = ProcedureService()
