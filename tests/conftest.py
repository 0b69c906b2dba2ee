"""Shared test fixtures for clinicbook tests."""

import os

# Must be set before clinicbook.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SLOT_CACHE_ENABLED"] = "false"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

from datetime import date, datetime  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from clinicbook.database import Base, build_engine  # noqa: E402
from clinicbook.domain.scheduling.events import NotificationDispatcher  # noqa: E402
from clinicbook.domain.scheduling.lifecycle import AppointmentLifecycleManager  # noqa: E402
from clinicbook.domain.scheduling.schemas import PatientInfo  # noqa: E402
from clinicbook.models import (  # noqa: E402
    AppointmentRules,
    AvailabilitySlot,
    ConsultationType,
    DoctorProfile,
)

# Sunday morning; the seeded doctor works Mondays 09:00-13:00
NOW = datetime(2026, 1, 4, 8, 0)
MONDAY = date(2026, 1, 5)
TUESDAY = date(2026, 1, 6)


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so several threads can share one database."""
    engine = build_engine(f"sqlite:///{tmp_path / 'clinicbook-test.db'}")
    Base.metadata.create_all(bind=engine)
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
def clinic(db) -> SimpleNamespace:
    """Doctor with Monday 09:00-13:00, 15-minute consultations and a 5-minute buffer."""
    doctor = DoctorProfile(
        name="Dr. Asha Rao",
        slug="asha-rao",
        specialization="General Medicine",
        default_duration=15,
        buffer_time=5,
    )
    db.add(doctor)
    db.flush()
    db.add(
        AvailabilitySlot(
            doctor_id=doctor.id, day_of_week="MONDAY", start_time="09:00", end_time="13:00"
        )
    )
    consultation = ConsultationType(
        doctor_id=doctor.id, name="General consultation", kind="IN_PERSON", fee=500.0, duration=15
    )
    db.add(consultation)
    db.add(AppointmentRules(doctor_id=doctor.id))
    db.commit()
    return SimpleNamespace(doctor_id=doctor.id, consultation_type_id=consultation.id)


@pytest.fixture
def long_consultation(db, clinic) -> int:
    """A 30-minute consultation type for the seeded doctor."""
    consultation = ConsultationType(
        doctor_id=clinic.doctor_id, name="Extended consultation", kind="IN_PERSON", fee=900.0, duration=30
    )
    db.add(consultation)
    db.commit()
    return consultation.id


@pytest.fixture
def second_clinic(db) -> SimpleNamespace:
    """Another Monday doctor who never saved booking rules, so defaults apply."""
    doctor = DoctorProfile(name="Dr. Kiran Das", slug="kiran-das", default_duration=15, buffer_time=5)
    db.add(doctor)
    db.flush()
    db.add(
        AvailabilitySlot(
            doctor_id=doctor.id, day_of_week="MONDAY", start_time="09:00", end_time="13:00"
        )
    )
    consultation = ConsultationType(
        doctor_id=doctor.id, name="General consultation", kind="IN_PERSON", fee=400.0, duration=15
    )
    db.add(consultation)
    db.commit()
    return SimpleNamespace(doctor_id=doctor.id, consultation_type_id=consultation.id)


@pytest.fixture
def set_rules(db, clinic):
    """Overwrite fields on the seeded doctor's rules row."""

    def _set(**fields):
        rules = db.query(AppointmentRules).filter_by(doctor_id=clinic.doctor_id).one()
        for key, value in fields.items():
            setattr(rules, key, value)
        db.commit()

    return _set


@pytest.fixture
def patient() -> PatientInfo:
    return PatientInfo(name="Ravi Kumar", phone="+919876543210", email="ravi@example.com")


@pytest.fixture
def other_patient() -> PatientInfo:
    return PatientInfo(name="Meera Iyer", phone="+919812345678")


@pytest.fixture
def events():
    """Dispatcher that records every published event."""
    dispatcher = NotificationDispatcher()
    received = []
    dispatcher.subscribe(received.append)
    return SimpleNamespace(dispatcher=dispatcher, received=received)


@pytest.fixture
def manager(db, events) -> AppointmentLifecycleManager:
    return AppointmentLifecycleManager(db, notifier=events.dispatcher)


@pytest.fixture
def book(manager, clinic, patient):
    """Book the seeded doctor; defaults to Monday 09:00 at NOW."""

    def _book(time="09:00", day=MONDAY, who=None, now=NOW):
        return manager.book(
            doctor_id=clinic.doctor_id,
            consultation_type_id=clinic.consultation_type_id,
            target_date=day,
            time=time,
            patient=who or patient,
            now=now,
        )

    return _book
