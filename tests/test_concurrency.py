"""Lost races between two sessions on a shared file-backed database."""

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.exceptions import InvalidTransitionError, SlotOccupiedError
from app.core.permissions import Principal, UserRole
from app.database import Base
from app.domain.procedure_state import StepName
from app.schemas.rendezvous import RendezvousReschedule
from app.services.procedure_service import procedure_service
from app.services.rendezvous_service import rendezvous_service
from conftest import BOOKING_DAY, NOW, booking_payload

ADMIN = Principal(id=uuid.uuid4(), email="admin@panameconsulting.com", role=UserRole.ADMIN)


@pytest.fixture
async def sessions(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'paname.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture
def stale_availability(monkeypatch):
    """Availability check that ran before the rival booking committed."""

    async def slot_free(*args, **kwargs):
        return False

    monkeypatch.setattr(rendezvous_service, "_slot_taken", slot_free)


async def booked(sessions, **overrides):
    async with sessions() as db:
        rendezvous = await rendezvous_service.book(db, booking_payload(**overrides), now=NOW)
        await db.commit()
        return rendezvous.id


async def open_procedure(sessions):
    async with sessions() as db:
        rendezvous = await rendezvous_service.book(db, booking_payload(), now=NOW)
        await rendezvous_service.confirm(db, rendezvous.id, ADMIN, now=NOW)
        await rendezvous_service.complete(db, rendezvous.id, "favorable", ADMIN)
        procedure = await procedure_service.create_from_rendezvous(db, rendezvous.id, ADMIN)
        await db.commit()
        return procedure.id


async def test_booking_race_for_one_slot(sessions, stale_availability):
    await booked(sessions, email="rival@example.com", time_slot="10:00")

    async with sessions() as db:
        with pytest.raises(SlotOccupiedError) as exc_info:
            await rendezvous_service.book(db, booking_payload(time_slot="10:00"), now=NOW)
    assert "10:00" in exc_info.value.detail


async def test_reschedule_race_for_one_slot(sessions, stale_availability):
    mine = await booked(sessions, time_slot="09:00")
    await booked(sessions, email="rival@example.com", time_slot="11:00")

    async with sessions() as db:
        with pytest.raises(SlotOccupiedError):
            await rendezvous_service.reschedule(
                db, mine, RendezvousReschedule(date=BOOKING_DAY, time_slot="11:00"), ADMIN, now=NOW
            )


async def test_stale_cancel_loses_to_confirm(sessions):
    rendezvous_id = await booked(sessions)

    async with sessions() as first, sessions() as second:
        await rendezvous_service.get(first, rendezvous_id, ADMIN)

        await rendezvous_service.confirm(second, rendezvous_id, ADMIN, now=NOW)
        await second.commit()

        with pytest.raises(InvalidTransitionError):
            await rendezvous_service.cancel(first, rendezvous_id, ADMIN, now=NOW)


async def test_stale_confirm_loses_to_cancel(sessions):
    rendezvous_id = await booked(sessions)

    async with sessions() as first, sessions() as second:
        await rendezvous_service.get(first, rendezvous_id, ADMIN)

        await rendezvous_service.cancel(second, rendezvous_id, ADMIN, now=NOW)
        await second.commit()

        with pytest.raises(InvalidTransitionError):
            await rendezvous_service.confirm(first, rendezvous_id, ADMIN, now=NOW)

    async with sessions() as db:
        current = await rendezvous_service.get(db, rendezvous_id, ADMIN)
        assert current.status == "cancelled"


async def test_stale_step_update_loses(sessions):
    procedure_id = await open_procedure(sessions)
    admission = StepName.ADMISSION_REQUEST.value

    async with sessions() as first, sessions() as second:
        await procedure_service.get(first, procedure_id, ADMIN)

        await procedure_service.update_step(second, procedure_id, admission, "in_progress", ADMIN)
        await second.commit()

        with pytest.raises(InvalidTransitionError):
            await procedure_service.update_step(first, procedure_id, admission, "completed", ADMIN)

    async with sessions() as db:
        current = await procedure_service.get(db, procedure_id, ADMIN)
        assert current.step(admission).status == "in_progress"
