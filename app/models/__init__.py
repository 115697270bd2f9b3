"""Database models."""

from app.models.procedure import Procedure, ProcedureStep
from app.models.rendezvous import Rendezvous
from app.models.user import User

__all__ = [
    "User",
    "Rendezvous",
    "Procedure",
    "ProcedureStep",
]
