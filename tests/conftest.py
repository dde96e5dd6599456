import os

# Must be set before clinicbook is imported
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite://"
os.environ["SLOT_CACHE_ENABLED"] = "0"

import pytest
from sqlalchemy.orm import sessionmaker

from clinicbook.core.database import build_engine, init_db
from clinicbook.core.security import Actor, UserRole
from clinicbook.models.doctor import Doctor
from clinicbook.models.patient import Patient
from clinicbook.services.appointment_service import AppointmentService
from tests.factories import RecordingDispatcher, standard_week

@pytest.fixture
def engine(tmp_path):
    # A file database so that separate sessions really run concurrently
    engine = build_engine(f"sqlite:///{tmp_path / 'clinicbook.db'}")
    init_db(engine)
    yield engine
    engine.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()

@pytest.fixture
def make_doctor(db):
    counter = {"n": 0}

    def _make(**overrides) -> Doctor:
        counter["n"] += 1
        fields = {
            "first_name": "Grace",
            "last_name": f"Hopper{counter['n']}",
            "specialization": "General Practice",
            "license_number": f"LIC-{counter['n']:05d}",
            "consultation_fee": 150.0,
            "is_verified": True,
            "is_accepting_new_patients": True,
            "timezone": "UTC",
            "availability": standard_week().model_dump(),
        }
        fields.update(overrides)
        doctor = Doctor(**fields)
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor

    return _make

@pytest.fixture
def make_patient(db):
    counter = {"n": 0}

    def _make(**overrides) -> Patient:
        counter["n"] += 1
        fields = {
            "first_name": "Ada",
            "last_name": f"Lovelace{counter['n']}",
            "email": f"patient{counter['n']}@example.com",
        }
        fields.update(overrides)
        patient = Patient(**fields)
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
def admin():
    return Actor(role=UserRole.ADMIN, user_id=1)

@pytest.fixture
def dispatcher():
    return RecordingDispatcher()

@pytest.fixture
def service(db, dispatcher):
    return AppointmentService(db, dispatcher=dispatcher)
