"""Procedure step-gate state machine.

Steps (fixed order): admission_request → visa_request → travel_preparation.
Per step: pending → in_progress → completed, pending/in_progress → rejected
or cancelled. Completed, rejected and cancelled steps are terminal.
"""

from enum import Enum

from app.core.exceptions import InvalidTransitionError, StepOrderError, ValidationError


class StepName(str, Enum):
    """The three procedure steps."""

    ADMISSION_REQUEST = "admission_request"
    VISA_REQUEST = "visa_request"
    TRAVEL_PREPARATION = "travel_preparation"

    @property
    def label(self) -> str:
        return _STEP_LABELS[self]


_STEP_LABELS = {
    StepName.ADMISSION_REQUEST: "Demande d'admission",
    StepName.VISA_REQUEST: "Demande de visa",
    StepName.TRAVEL_PREPARATION: "Préparatifs de voyage",
}

STEP_ORDER: tuple[StepName, ...] = (
    StepName.ADMISSION_REQUEST,
    StepName.VISA_REQUEST,
    StepName.TRAVEL_PREPARATION,
)

# Step that must be completed before a given step may change
STEP_PREREQUISITES: dict[StepName, StepName] = {
    StepName.VISA_REQUEST: StepName.ADMISSION_REQUEST,
    StepName.TRAVEL_PREPARATION: StepName.VISA_REQUEST,
}


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return {
            "pending": "En attente",
            "in_progress": "En cours",
            "completed": "Terminé",
            "rejected": "Rejeté",
            "cancelled": "Annulé",
        }[self.value]


class ProcedureStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return {
            "in_progress": "En cours",
            "completed": "Terminée",
            "rejected": "Refusée",
            "cancelled": "Annulée",
        }[self.value]


TERMINAL_STEP_STATUSES = frozenset(
    {StepStatus.COMPLETED, StepStatus.REJECTED, StepStatus.CANCELLED}
)
OPEN_STEP_STATUSES = frozenset({StepStatus.PENDING, StepStatus.IN_PROGRESS})

STEP_TRANSITIONS: dict[StepStatus, set[StepStatus]] = {
    StepStatus.PENDING: {
        StepStatus.PENDING,
        StepStatus.IN_PROGRESS,
        StepStatus.COMPLETED,
        StepStatus.REJECTED,
        StepStatus.CANCELLED,
    },
    StepStatus.IN_PROGRESS: {
        StepStatus.IN_PROGRESS,
        StepStatus.COMPLETED,
        StepStatus.REJECTED,
        StepStatus.CANCELLED,
    },
    StepStatus.COMPLETED: set(),
    StepStatus.REJECTED: set(),
    StepStatus.CANCELLED: set(),
}

PROCEDURE_TRANSITIONS: dict[ProcedureStatus, set[ProcedureStatus]] = {
    ProcedureStatus.IN_PROGRESS: {
        ProcedureStatus.COMPLETED,
        ProcedureStatus.REJECTED,
        ProcedureStatus.CANCELLED,
    },
    ProcedureStatus.COMPLETED: set(),
    ProcedureStatus.REJECTED: set(),
    ProcedureStatus.CANCELLED: set(),
}


def parse_step_name(value: str | StepName) -> StepName:
    try:
        return StepName(value)
    except ValueError:
        valid = ", ".join(s.value for s in STEP_ORDER)
        raise ValidationError(f"Nom d'étape invalide: {value}. Étapes valides: {valid}")


def parse_step_status(value: str | StepStatus) -> StepStatus:
    try:
        return StepStatus(value)
    except ValueError:
        raise ValidationError(f"Statut d'étape invalide: {value}")


def is_noop_terminal_write(current: StepStatus, target: StepStatus) -> bool:
    """Writing the same status onto a terminal step is accepted and ignored."""
    return current in TERMINAL_STEP_STATUSES and current == target


def assert_step_update(
    step: StepName,
    target: StepStatus,
    statuses: dict[StepName, StepStatus],
    reason: str | None = None,
) -> None:
    """Validate a step status change against the current statuses of all steps.

    Checks, in order: terminal immutability, step order gate, per-step
    transition table, rejection reason.

    Raises:
        InvalidTransitionError: Terminal step or disallowed transition
        StepOrderError: Prerequisite step not completed
        ValidationError: Rejection without a reason
    """
    current = statuses[step]

    if current in TERMINAL_STEP_STATUSES and current != target:
        raise InvalidTransitionError(
            f"Impossible de modifier une étape « {current.label.lower()} »",
            current=current.value,
            target=target.value,
        )

    prerequisite = STEP_PREREQUISITES.get(step)
    if prerequisite is not None and statuses.get(prerequisite) != StepStatus.COMPLETED:
        raise StepOrderError(step=step.label, blocking_step=prerequisite.label)

    if current != target and target not in STEP_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Impossible de passer l'étape « {step.label} » de « {current.label} » à « {target.label} »",
            current=current.value,
            target=target.value,
        )

    if target == StepStatus.REJECTED and (not reason or not reason.strip()):
        raise ValidationError("La raison du refus est obligatoire lorsque le statut est « Rejeté »")


def assert_procedure_transition(current: str | ProcedureStatus, target: str | ProcedureStatus) -> None:
    current = ProcedureStatus(current)
    target = ProcedureStatus(target)
    if target not in PROCEDURE_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Procédure déjà « {current.label.lower()} », impossible de la passer à « {target.label.lower()} »",
            current=current.value,
            target=target.value,
        )


def all_steps_completed(statuses: dict[StepName, StepStatus]) -> bool:
    return all(statuses.get(name) == StepStatus.COMPLETED for name in STEP_ORDER)
