import pytest
from typing import Callable, Generator, List
from datetime import datetime, date, time, timedelta
from uuid import uuid4

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from clinic_booking.core.config import settings
from clinic_booking.core.events import AppointmentEventPayload, EventDispatcher
from clinic_booking.domain.appointments.models import AvailabilitySlot
from clinic_booking.domain.appointments.service import AppointmentService, AvailabilityService
from clinic_booking.domain.appointments.sweeper import ExpirySweeper
from clinic_booking.domain.doctors.models import Clinic, Doctor
from clinic_booking.domain.doctors.service import DoctorService, ReviewService
from clinic_booking.infrastructure.database import build_engine, build_session_factory, get_db, init_db
from clinic_booking.infrastructure.locks import KeyedLockManager


# Monday morning; slots default to the next day
FROZEN_NOW = datetime(2026, 3, 2, 8, 0, 0)


class FrozenClock:
    """Callable clock the services read instead of datetime.now"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSubscriber:
    """Collects every event handed to it"""

    def __init__(self):
        self.events: List[AppointmentEventPayload] = []

    def __call__(self, event: AppointmentEventPayload) -> None:
        self.events.append(event)

    @property
    def types(self) -> List[str]:
        return [event.event_type.value for event in self.events]


@pytest.fixture(scope="function")
def engine(tmp_path):
    """File-backed SQLite so separate threads see each other's commits."""
    test_engine = build_engine(f"sqlite:///{tmp_path / 'booking.db'}")
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return build_session_factory(engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def clock() -> FrozenClock:
    return FrozenClock(FROZEN_NOW)


@pytest.fixture(scope="function")
def test_settings():
    return settings.model_copy(update={
        "INITIAL_APPOINTMENT_STATUS": "scheduled",
        "BOOKING_HORIZON_DAYS": 30,
        "PENDING_EXPIRY_HOURS": 24,
        "SLOT_LOCK_TIMEOUT_SECONDS": 5.0,
        "SLOT_RETENTION_DAYS": 7,
        "MAX_NOTES_LENGTH": 600,
    })


@pytest.fixture(scope="function")
def pending_settings(test_settings):
    """Settings where new appointments start pending and can expire."""
    return test_settings.model_copy(update={"INITIAL_APPOINTMENT_STATUS": "pending"})


@pytest.fixture(scope="function")
def recorder() -> RecordingSubscriber:
    return RecordingSubscriber()


@pytest.fixture(scope="function")
def dispatcher(clock, recorder) -> EventDispatcher:
    test_dispatcher = EventDispatcher(clock=clock)
    test_dispatcher.subscribe(recorder)
    return test_dispatcher


@pytest.fixture(scope="function")
def locks() -> KeyedLockManager:
    return KeyedLockManager()


@pytest.fixture(scope="function")
def make_appointment_service(dispatcher, test_settings, clock, locks) -> Callable[..., AppointmentService]:
    """Build an AppointmentService bound to a session, sharing the test clock and locks."""
    def _make(db: Session, config=None) -> AppointmentService:
        return AppointmentService(
            db,
            dispatcher=dispatcher,
            config=config or test_settings,
            clock=clock,
            locks=locks
        )
    return _make


@pytest.fixture(scope="function")
def appointment_service(db_session, make_appointment_service) -> AppointmentService:
    return make_appointment_service(db_session)


@pytest.fixture(scope="function")
def make_sweeper(dispatcher, pending_settings, clock, locks) -> Callable[..., ExpirySweeper]:
    def _make(db: Session, config=None) -> ExpirySweeper:
        return ExpirySweeper(
            db,
            dispatcher=dispatcher,
            config=config or pending_settings,
            clock=clock,
            locks=locks
        )
    return _make


@pytest.fixture(scope="function")
def doctor_service(db_session, clock) -> DoctorService:
    return DoctorService(db_session, clock=clock)


@pytest.fixture(scope="function")
def availability_service(db_session, test_settings, clock, locks) -> AvailabilityService:
    return AvailabilityService(db_session, config=test_settings, clock=clock, locks=locks)


@pytest.fixture(scope="function")
def review_service(db_session, clock) -> ReviewService:
    return ReviewService(db_session, clock=clock)


@pytest.fixture(scope="function")
def sample_doctor_data() -> dict:
    """Doctor with every profile field filled in."""
    return {
        "full_name": "Dr. Amara Okafor",
        "specialty": "Cardiology",
        "experience_years": 12,
        "license_number": f"LIC-{uuid4().hex[:8]}",
        "bio": "Interventional cardiologist.",
        "fee": 5000,
    }


@pytest.fixture(scope="function")
def clinic(doctor_service) -> Clinic:
    return doctor_service.create_clinic({
        "name": "Riverside Clinic",
        "address": "12 River Road",
        "phone": "+15550100",
    })


@pytest.fixture(scope="function")
def doctor(doctor_service, clinic, sample_doctor_data) -> Doctor:
    """Verified, active doctor linked to the clinic."""
    created = doctor_service.create_doctor(sample_doctor_data)
    doctor_service.set_verified(created.id, True)
    doctor_service.link_clinic(created.id, clinic.id, is_primary=True)
    return created


@pytest.fixture(scope="function")
def make_slot(availability_service, doctor, clinic, clock) -> Callable[..., AvailabilitySlot]:
    """Publish a slot for the seeded doctor; defaults to tomorrow 10:00-10:30, capacity 1."""
    def _make(
        capacity: int = 1,
        days_ahead: int = 1,
        start: time = time(10, 0),
        end: time = time(10, 30),
        slot_date: date = None
    ) -> AvailabilitySlot:
        return availability_service.publish_slot(
            doctor_id=doctor.id,
            clinic_id=clinic.id,
            slot_date=slot_date or clock().date() + timedelta(days=days_ahead),
            start_time=start,
            end_time=end,
            capacity=capacity
        )
    return _make


@pytest.fixture(scope="function")
def slot(make_slot) -> AvailabilitySlot:
    return make_slot()


@pytest.fixture(scope="function")
def client(session_factory) -> Generator[TestClient, None, None]:
    """Create a test client with database dependency override."""
    from clinic_booking.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "concurrency: mark test as exercising concurrent writers"
    )
    config.addinivalue_line(
        "markers", "api: mark test as HTTP surface related"
    )
