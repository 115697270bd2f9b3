"""Appointment (rendez-vous) state machine and scheduling rules.

States: pending → confirmed → completed, pending/confirmed → cancelled.
Completed and cancelled are terminal.
"""

from datetime import date, datetime, time, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

from app.core.exceptions import InvalidTransitionError, ValidationError


class RendezvousStatus(str, Enum):
    """Appointment statuses."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    RendezvousStatus.PENDING: "En attente",
    RendezvousStatus.CONFIRMED: "Confirmé",
    RendezvousStatus.COMPLETED: "Terminé",
    RendezvousStatus.CANCELLED: "Annulé",
}


class AdminVerdict(str, Enum):
    """Outcome recorded by an administrator when completing an appointment."""

    FAVORABLE = "favorable"
    UNFAVORABLE = "unfavorable"

    @property
    def label(self) -> str:
        return "Favorable" if self is AdminVerdict.FAVORABLE else "Défavorable"


class Destination(str, Enum):
    ALGERIE = "Algérie"
    TURQUIE = "Turquie"
    MAROC = "Maroc"
    FRANCE = "France"
    TUNISIE = "Tunisie"
    CHINE = "Chine"
    RUSSIE = "Russie"
    AUTRE = "Autre"


class EducationLevel(str, Enum):
    BAC = "Bac"
    BAC_1 = "Bac+1"
    BAC_2 = "Bac+2"
    LICENCE = "Licence"
    MASTER_1 = "Master I"
    MASTER_2 = "Master II"
    DOCTORAT = "Doctorat"


class FieldOfStudy(str, Enum):
    INFORMATIQUE = "Informatique"
    MEDECINE = "Médecine"
    INGENIERIE = "Ingénierie"
    DROIT = "Droit"
    COMMERCE = "Commerce"
    AUTRE = "Autre"


RENDEZVOUS_TRANSITIONS: dict[RendezvousStatus, set[RendezvousStatus]] = {
    RendezvousStatus.PENDING: {RendezvousStatus.CONFIRMED, RendezvousStatus.CANCELLED},
    RendezvousStatus.CONFIRMED: {RendezvousStatus.COMPLETED, RendezvousStatus.CANCELLED},
    RendezvousStatus.COMPLETED: set(),
    RendezvousStatus.CANCELLED: set(),
}

ACTIVE_STATUSES = frozenset({RendezvousStatus.PENDING, RendezvousStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({RendezvousStatus.COMPLETED, RendezvousStatus.CANCELLED})


def assert_rendezvous_transition(
    current: str | RendezvousStatus, target: str | RendezvousStatus
) -> None:
    """Validate an appointment status transition.

    Raises:
        InvalidTransitionError: If the transition is not in the table
    """
    current = RendezvousStatus(current)
    target = RendezvousStatus(target)
    if target not in RENDEZVOUS_TRANSITIONS[current]:
        if current in TERMINAL_STATUSES:
            detail = f"Ce rendez-vous est déjà {current.label.lower()}, son statut ne peut plus changer"
        else:
            detail = f"Impossible de passer un rendez-vous de « {current.label} » à « {target.label} »"
        raise InvalidTransitionError(detail, current=current.value, target=target.value)


def parse_verdict(verdict: str | AdminVerdict | None) -> AdminVerdict:
    """Coerce a verdict, raising ValidationError when missing or unknown."""
    if verdict is None or verdict == "":
        raise ValidationError("L'avis administratif est obligatoire pour terminer un rendez-vous")
    try:
        return AdminVerdict(verdict)
    except ValueError:
        raise ValidationError(f"Avis administratif invalide: {verdict}")


# ==================== SLOT GRID ====================


def _parse_hhmm(value: str) -> int:
    """Minutes since midnight for an ``HH:MM`` string."""
    hours, sep, minutes = value.partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit() or len(minutes) != 2:
        raise ValidationError(f"Format d'heure invalide: {value} (attendu HH:MM)")
    h, m = int(hours), int(minutes)
    if h > 23 or m > 59:
        raise ValidationError(f"Format d'heure invalide: {value} (attendu HH:MM)")
    return h * 60 + m


def generate_time_slots(opening: str = "09:00", last_slot: str = "16:30", step_minutes: int = 30) -> list[str]:
    """All bookable slots from opening to last slot inclusive."""
    start = _parse_hhmm(opening)
    end = _parse_hhmm(last_slot)
    return [f"{m // 60:02d}:{m % 60:02d}" for m in range(start, end + 1, step_minutes)]


def validate_time_slot(
    time_slot: str, opening: str = "09:00", last_slot: str = "16:30", step_minutes: int = 30
) -> str:
    """Normalise a slot to ``HH:MM`` and check it lies on the grid."""
    minutes = _parse_hhmm(time_slot)
    normalised = f"{minutes // 60:02d}:{minutes % 60:02d}"
    start = _parse_hhmm(opening)
    end = _parse_hhmm(last_slot)
    if minutes < start or minutes > end:
        raise ValidationError(f"Les horaires disponibles sont entre {opening} et {last_slot}")
    if (minutes - start) % step_minutes != 0:
        raise ValidationError(
            f"Les créneaux doivent être espacés de {step_minutes} minutes à partir de {opening}"
        )
    return normalised


def appointment_datetime(day: date, time_slot: str, tz: ZoneInfo) -> datetime:
    """Timezone-aware start of an appointment."""
    minutes = _parse_hhmm(time_slot)
    return datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=tz)


def is_closed_day(day: date, closed_weekdays: list[int] | None = None, holidays: list[date] | None = None) -> bool:
    """Closed weekday or public holiday."""
    if closed_weekdays and day.weekday() in closed_weekdays:
        return True
    return bool(holidays) and day in holidays


def validate_booking_datetime(
    day: date,
    time_slot: str,
    now: datetime,
    tz: ZoneInfo,
    closed_weekdays: list[int] | None = None,
    holidays: list[date] | None = None,
) -> None:
    """Date must be today or later; a slot today must still be ahead of now."""
    local_now = now.astimezone(tz)
    if day < local_now.date():
        raise ValidationError("La date doit être aujourd'hui ou ultérieure")
    if closed_weekdays and day.weekday() in closed_weekdays:
        raise ValidationError("Les réservations sont fermées ce jour de la semaine")
    if holidays and day in holidays:
        raise ValidationError("Les réservations sont fermées les jours fériés")
    if day == local_now.date() and appointment_datetime(day, time_slot, tz) <= local_now:
        raise ValidationError("Vous ne pouvez pas réserver un créneau passé pour aujourd'hui")


def require_other_override(value: str, other: str | None, field_label: str) -> str | None:
    """``Autre`` needs a non-empty free-text override; other values drop it."""
    if value == "Autre":
        if not other or not other.strip():
            raise ValidationError(f"Veuillez préciser votre {field_label}")
        return other.strip()
    return None


# ==================== CANCELLATION CUTOFF ====================


def can_client_cancel(
    appointment_at: datetime, now: datetime, cutoff_hours: int = 2
) -> tuple[bool, str | None]:
    """Check the client self-cancellation window.

    A client may cancel only when the appointment starts strictly more than
    ``cutoff_hours`` from now; exactly at the cutoff is refused.

    Returns:
        Tuple of (can_cancel, error_message)
    """
    remaining = appointment_at - now
    if remaining <= timedelta(hours=cutoff_hours):
        return False, f"Annulation impossible à moins de {cutoff_hours} heures du rendez-vous"
    return True, None
