"""Custom application exceptions.

Every domain outcome the managers can report is an ``AppException`` carrying
the HTTP status the API answers with and a French, user-displayable detail.
"""

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "Une erreur inattendue est survenue",
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class ValidationError(AppException):
    """Malformed or missing input field."""

    def __init__(self, detail: str = "Données invalides") -> None:
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class NotFoundError(AppException):
    """Referenced entity does not exist or is soft-deleted."""

    def __init__(self, resource: str = "Ressource", identifier: str | None = None) -> None:
        detail = f"{resource} introuvable"
        if identifier:
            detail = f"{resource} '{identifier}' introuvable"
        self.resource = resource
        self.identifier = identifier
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class AuthenticationError(AppException):
    """Authentication failed exception."""

    def __init__(self, detail: str = "Authentification requise") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(AppException):
    """Actor lacks the role or ownership required for the operation."""

    def __init__(self, detail: str = "Vous n'avez pas les droits nécessaires pour cette action") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class SlotOccupiedError(AppException):
    """Requested date/slot is already held by an active appointment."""

    def __init__(self, date: str | None = None, time_slot: str | None = None) -> None:
        detail = "Ce créneau horaire n'est pas disponible"
        if date and time_slot:
            detail = f"Le créneau du {date} à {time_slot} n'est pas disponible"
        self.date = date
        self.time_slot = time_slot
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class InvalidTransitionError(AppException):
    """Requested status change is not permitted from the current status."""

    def __init__(
        self,
        detail: str = "Ce changement de statut n'est pas autorisé",
        current: str | None = None,
        target: str | None = None,
    ) -> None:
        self.current = current
        self.target = target
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class CancellationWindowError(AppException):
    """Client attempted to self-cancel inside the cutoff window."""

    def __init__(self, cutoff_hours: int = 2) -> None:
        self.cutoff_hours = cutoff_hours
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                "Vous ne pouvez plus annuler votre rendez-vous "
                f"à moins de {cutoff_hours} heures de l'heure prévue"
            ),
        )


class StepOrderError(AppException):
    """A step was advanced before its prerequisite step was completed."""

    def __init__(self, step: str, blocking_step: str, detail: str | None = None) -> None:
        self.step = step
        self.blocking_step = blocking_step
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail or f"L'étape « {blocking_step} » doit être terminée avant de modifier « {step} »",
        )


class PreconditionError(AppException):
    """Operation requires a prior state that the source entity is not in."""

    def __init__(self, detail: str = "Les conditions préalables ne sont pas remplies") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class RateLimitExceeded(AppException):
    """Rate limit exceeded exception."""

    def __init__(self, detail: str = "Trop de requêtes. Veuillez réessayer plus tard.") -> None:
        super().__init__(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=detail)


class ServiceUnavailableError(AppException):
    """Infrastructure failure (database, broker) distinct from domain errors."""

    def __init__(self, service: str = "database", detail: str | None = None) -> None:
        message = "Service temporairement indisponible, veuillez réessayer plus tard"
        if detail:
            message = f"{message}: {detail}"
        self.service = service
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message)
