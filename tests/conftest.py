"""Shared fixtures: in-memory SQLite database, users, principals and an API client."""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SENDGRID_API_KEY"] = ""
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["BUSINESS_TIMEZONE"] = "Europe/Paris"

from collections.abc import AsyncGenerator
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.permissions import Principal, UserRole
from app.core.security import create_user_token
from app.database import Base, commit, get_db, rollback
from app.domain.rendezvous_state import Destination, EducationLevel, FieldOfStudy
from app.main import app as fastapi_app
from app.models.user import User
from app.schemas.rendezvous import RendezvousCreate

PARIS = ZoneInfo("Europe/Paris")

# 2025-05-30 is a Friday; scenarios book on Sunday 2025-06-01
NOW = datetime(2025, 5, 30, 10, 0, tzinfo=PARIS)
BOOKING_DAY = date(2025, 6, 1)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


async def _make_user(session_factory, email: str, role: UserRole) -> User:
    async with session_factory() as session:
        user = User(email=email, role=role.value, first_name="Test", last_name=role.value.title())
        session.add(user)
        await session.commit()
        return user


@pytest.fixture
async def admin_user(session_factory) -> User:
    return await _make_user(session_factory, "admin@panameconsulting.com", UserRole.ADMIN)


@pytest.fixture
async def client_user(session_factory) -> User:
    return await _make_user(session_factory, "amina.benali@example.com", UserRole.CLIENT)


@pytest.fixture
async def other_client_user(session_factory) -> User:
    return await _make_user(session_factory, "karim.haddad@example.com", UserRole.CLIENT)


@pytest.fixture
def admin(admin_user) -> Principal:
    return Principal.from_user(admin_user)


@pytest.fixture
def client(client_user) -> Principal:
    return Principal.from_user(client_user)


@pytest.fixture
def other_client(other_client_user) -> Principal:
    return Principal.from_user(other_client_user)


def booking_payload(**overrides) -> RendezvousCreate:
    data = {
        "first_name": "Amina",
        "last_name": "Benali",
        "email": "amina.benali@example.com",
        "phone": "+33 6 12 34 56 78",
        "destination": Destination.FRANCE,
        "education_level": EducationLevel.LICENCE,
        "field_of_study": FieldOfStudy.INFORMATIQUE,
        "date": BOOKING_DAY,
        "time_slot": "09:00",
    }
    data.update(overrides)
    return RendezvousCreate(**data)


# ==================== API ====================


@pytest.fixture
async def api(session_factory) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await commit(session)
            except Exception:
                await rollback(session)
                raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as ac:
        yield ac
    fastapi_app.dependency_overrides.clear()


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_user_token(str(user.id), user.email, user.role)}"}


def future_day(days: int = 10) -> date:
    return date.today() + timedelta(days=days)
