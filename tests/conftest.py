import os
import tempfile
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from pathlib import Path
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Load environment variables from .env file
load_dotenv()

# Tests run on a throwaway SQLite file unless TEST_DATABASE_URL points elsewhere.
# Settings are read at import time, so this must happen before importing admission.
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="admission-tests-"))
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL") or f"sqlite:///{_TEST_DB_DIR / 'test.db'}"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ["CLINIC_TIMEZONE"] = "America/Mexico_City"
os.environ["ALLOW_CLOCK_OVERRIDE"] = "true"
os.environ["LOCK_BACKEND"] = "local"
os.environ["LOG_FORMAT"] = "console"

from admission.core.clock import ClinicClock  # noqa: E402
from admission.core.locks import LocalLockManager  # noqa: E402
from admission.core.security import create_access_token  # noqa: E402
from admission.database import async_database_url, get_db  # noqa: E402
from admission.dependencies import get_admission_service  # noqa: E402
from admission.domain.guards import AdmissionPolicy  # noqa: E402
from admission.domain.schedule_rules import ScheduleRules  # noqa: E402
from admission.main import app  # noqa: E402
from admission.models import appointments, metadata  # noqa: E402
from admission.schemas.appointments import AppointmentStatus  # noqa: E402
from admission.services.admission_service import AdmissionService  # noqa: E402

CLINIC_TIMEZONE = "America/Mexico_City"

# Use NullPool so every session gets its own connection
test_engine = create_async_engine(
    async_database_url(TEST_DATABASE_URL),
    echo=False,
    poolclass=NullPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

MakeAppointment = Callable[..., Awaitable[UUID]]


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on freshly created tables."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture
def session_factory(db_session: AsyncSession) -> async_sessionmaker[AsyncSession]:
    """Session factory for tests that need several independent sessions."""
    return TestSessionLocal


@pytest.fixture
def clock() -> ClinicClock:
    """Clinic clock for Mexico City (UTC-6, no daylight saving)."""
    return ClinicClock(CLINIC_TIMEZONE)


@pytest.fixture
def policy() -> AdmissionPolicy:
    """Default admission windows: check-in -30/+15 minutes, no-show from +15."""
    return AdmissionPolicy()


@pytest.fixture
def schedule_rules() -> ScheduleRules:
    """Default clinic hours: Mon-Sat 09:00-15:00, lunch 12:00-13:00, 30 minute slots."""
    return ScheduleRules()


@pytest.fixture
def locks() -> LocalLockManager:
    """Fresh in-process lock manager."""
    return LocalLockManager(timeout=2.0)


@pytest.fixture
def make_service(
    clock: ClinicClock,
    locks: LocalLockManager,
    policy: AdmissionPolicy,
    schedule_rules: ScheduleRules,
) -> Callable[[AsyncSession], AdmissionService]:
    """Build admission services sharing one clock and lock manager."""

    def factory(session: AsyncSession) -> AdmissionService:
        return AdmissionService(
            session,
            clock=clock,
            locks=locks,
            policy=policy,
            schedule_rules=schedule_rules,
        )

    return factory


@pytest.fixture
def service(
    db_session: AsyncSession,
    make_service: Callable[[AsyncSession], AdmissionService],
) -> AdmissionService:
    """Admission service bound to the test session."""
    return make_service(db_session)


@pytest.fixture
def make_appointment(db_session: AsyncSession, clock: ClinicClock) -> MakeAppointment:
    """Insert appointments directly, as the scheduling side would."""

    async def factory(
        scheduled_at: datetime | None = None,
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        *,
        local: tuple[int, ...] = (2025, 3, 10, 14, 0),
    ) -> UUID:
        appointment_id = uuid4()
        await db_session.execute(
            insert(appointments).values(
                id=appointment_id,
                patient_id=uuid4(),
                scheduled_at=scheduled_at or clock.from_clinic_time(*local),
                status=status.value,
            )
        )
        await db_session.commit()
        return appointment_id

    return factory


@pytest.fixture
def actor_id() -> str:
    """Staff member performing transitions."""
    return "staff-reception-01"


@pytest.fixture
def auth_headers(actor_id: str) -> dict:
    """Create authentication headers for testing protected endpoints."""
    token = create_access_token(actor_id)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    service: AdmissionService,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_admission_service] = lambda: service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
