import os
import tempfile

# Must be set before the application modules build their engine
os.environ["TESTING"] = "1"
os.environ.setdefault(
    "TEST_DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), "clinicbook_test.db")
)

import itertools
from datetime import date, datetime, timedelta
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from clinicbook.main import app
from clinicbook.core.database import Base, get_db, get_redis
from clinicbook.core.config import settings
from clinicbook.core.security import UserRole
from clinicbook.models.appointment import Appointment  # noqa: F401
from clinicbook.models.availability import Availability, TimeSlot  # noqa: F401
from clinicbook.models.doctor import Doctor
from clinicbook.models.patient import Patient
from clinicbook.services.availability_service import AvailabilityService

FUTURE_DATE = date.today() + timedelta(days=7)
SLOTS = ["09:00", "10:00", "11:00"]
ADMIN_ID = 9000

class FakeRedis:
    """In-memory stand-in for the few Redis commands the rate limiter uses."""

    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, seconds, value):
        self.store[key] = str(value)
        return True

    def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

@pytest.fixture
def engine(tmp_path):
    # A file database so threads can use separate connections
    engine = create_engine(
        f"sqlite:///{tmp_path / 'clinicbook.db'}",
        connect_args={"check_same_thread": False, "timeout": 30}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def fake_redis():
    return FakeRedis()

@pytest.fixture
def client(session_factory, fake_redis):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis

    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

    app.dependency_overrides.clear()

@pytest.fixture
def make_doctor(db):
    counter = itertools.count(1)

    def _make(**overrides):
        n = next(counter)
        data = {
            "full_name": f"Dr. Test {n}",
            "email": f"doctor{n}@clinic.test",
            "phone_number": "555-0100",
            "specialization": "Cardiology",
        }
        data.update(overrides)
        doctor = Doctor(**data)
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor

    return _make

@pytest.fixture
def make_patient(db):
    counter = itertools.count(1)

    def _make(**overrides):
        n = next(counter)
        data = {
            "first_name": "Test",
            "last_name": f"Patient{n}",
            "email": f"patient{n}@clinic.test",
            "phone_number": "555-0200",
        }
        data.update(overrides)
        patient = Patient(**data)
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient

    return _make

@pytest.fixture
def doctor(make_doctor):
    return make_doctor()

@pytest.fixture
def patient(make_patient):
    return make_patient()

@pytest.fixture
def availability(db, doctor):
    """Three free slots one week from today."""
    result = AvailabilityService(db).publish_slots(doctor.id, FUTURE_DATE, FUTURE_DATE, SLOTS)
    return result.created[0]

def make_token(
    user_id: int,
    role: UserRole,
    email: Optional[str] = None,
    token_type: str = "access",
    expires_delta: Optional[timedelta] = None
) -> str:
    """Mint a token the way the identity service does."""
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    claims = {
        # python-jose requires a string subject
        "sub": str(user_id),
        "email": email,
        "role": role.value,
        "exp": expire,
        "token_type": token_type,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

@pytest.fixture
def auth_headers():
    def _headers(user_id: int, role: UserRole) -> dict:
        token = make_token(user_id, role)
        return {"Authorization": f"Bearer {token}"}

    return _headers
