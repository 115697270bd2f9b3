"""Appointment (rendez-vous) database model."""

from __future__ import annotations

import uuid
from datetime import date as date_type
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.user import utcnow

if TYPE_CHECKING:
    from app.models.user import User

_ACTIVE_SLOT = text("status IN ('pending', 'confirmed')")


class Rendezvous(Base):
    """Consulting appointment booked by a prospective student."""

    __tablename__ = "rendezvous"
    __table_args__ = (
        # One active appointment per (date, slot)
        Index(
            "uq_rendezvous_active_slot",
            "date",
            "time_slot",
            unique=True,
            postgresql_where=_ACTIVE_SLOT,
            sqlite_where=_ACTIVE_SLOT,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True
    )

    # Contact
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str] = mapped_column(String(30), nullable=False)

    # Study plan
    destination: Mapped[str] = mapped_column(String(30), nullable=False)
    destination_other: Mapped[str | None] = mapped_column(String(100))
    education_level: Mapped[str] = mapped_column(String(20), nullable=False)
    field_of_study: Mapped[str] = mapped_column(String(30), nullable=False)
    field_of_study_other: Mapped[str | None] = mapped_column(String(100))

    # Schedule
    date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    time_slot: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM

    # Status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )  # pending, confirmed, completed, cancelled
    admin_verdict: Mapped[str | None] = mapped_column(String(20))  # favorable, unfavorable

    # Cancellation
    cancelled_by: Mapped[str | None] = mapped_column(String(10))  # client, admin
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # Timestamps
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    user: Mapped["User | None"] = relationship("User", back_populates="rendezvous")

    @property
    def effective_destination(self) -> str:
        """Destination with the ``Autre`` override applied."""
        if self.destination == "Autre" and self.destination_other:
            return self.destination_other
        return self.destination

    @property
    def effective_field_of_study(self) -> str:
        if self.field_of_study == "Autre" and self.field_of_study_other:
            return self.field_of_study_other
        return self.field_of_study
