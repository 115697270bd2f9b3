"""Appointment-related Pydantic schemas."""

from datetime import date as date_type
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.domain.rendezvous_state import (
    AdminVerdict,
    Destination,
    EducationLevel,
    FieldOfStudy,
    RendezvousStatus,
)

TIME_SLOT_PATTERN = r"^\d{1,2}:\d{2}$"
PHONE_PATTERN = r"^\+?[0-9 ().\-]{6,30}$"


class RendezvousCreate(BaseModel):
    """Schema for booking an appointment."""

    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    destination: Destination
    destination_other: str | None = Field(None, max_length=100)
    education_level: EducationLevel
    field_of_study: FieldOfStudy
    field_of_study_other: str | None = Field(None, max_length=100)
    date: date_type
    time_slot: str = Field(..., pattern=TIME_SLOT_PATTERN)

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_names(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class RendezvousReschedule(BaseModel):
    """Schema for moving an appointment to another date/slot."""

    date: date_type
    time_slot: str = Field(..., pattern=TIME_SLOT_PATTERN)


class RendezvousComplete(BaseModel):
    """Schema for closing an appointment; the service validates the verdict."""

    admin_verdict: str | None = None


class RendezvousCancel(BaseModel):
    reason: str | None = Field(None, max_length=500)


class RendezvousResponse(BaseModel):
    """Schema for appointment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID | None

    # Contact
    first_name: str
    last_name: str
    email: str
    phone: str

    # Study plan
    destination: str
    destination_other: str | None
    education_level: str
    field_of_study: str
    field_of_study_other: str | None

    # Schedule
    date: date_type
    time_slot: str

    # Status
    status: RendezvousStatus
    admin_verdict: AdminVerdict | None

    # Cancellation
    cancelled_by: str | None
    cancellation_reason: str | None

    # Timestamps
    confirmed_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime


class RendezvousListResponse(BaseModel):
    """Paginated appointment list."""

    items: list[RendezvousResponse]
    total: int
    page: int
    page_size: int


class SlotListResponse(BaseModel):
    date: date_type
    slots: list[str]


class AvailableDatesResponse(BaseModel):
    dates: list[date_type]


class CompleteRendezvousResponse(BaseModel):
    """Completed appointment plus the procedure hint for favorable verdicts."""

    rendezvous: RendezvousResponse
    procedure_eligible: bool
