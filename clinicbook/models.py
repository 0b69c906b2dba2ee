from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Statuses that no longer hold their time slot. Kept in sync with
# domain.scheduling.schemas.RELEASED_STATUSES; the partial index below needs a literal.
_RELEASED_STATUS_SQL = "status NOT IN ('CANCELLED', 'RESCHEDULED')"


class DoctorProfile(Base):
    __tablename__ = "doctor_profiles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    specialization = Column(String(255), nullable=True)
    default_duration = Column(Integer, default=15, nullable=False)  # minutes
    buffer_time = Column(Integer, default=5, nullable=False)  # minutes between bookings
    is_active = Column(Boolean, default=True, nullable=False)  # soft-disable only
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    consultation_types = relationship(
        "ConsultationType", back_populates="doctor", order_by="ConsultationType.id"
    )
    availability = relationship(
        "AvailabilitySlot", back_populates="doctor", order_by="AvailabilitySlot.start_time"
    )
    rules = relationship("AppointmentRules", back_populates="doctor", uselist=False)
    appointments = relationship("Appointment", back_populates="doctor")


class ConsultationType(Base):
    __tablename__ = "consultation_types"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctor_profiles.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    kind = Column(String(20), nullable=False, default="IN_PERSON")  # IN_PERSON, VIDEO_CALL, PHONE_CALL
    fee = Column(Float, nullable=False, default=0.0)
    duration = Column(Integer, nullable=False)  # minutes, > 0
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    doctor = relationship("DoctorProfile", back_populates="consultation_types")


class AvailabilitySlot(Base):
    """Recurring weekly window; several per day are allowed and never merged."""

    __tablename__ = "availability_slots"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctor_profiles.id"), nullable=False, index=True)
    day_of_week = Column(String(10), nullable=False)  # MONDAY..SUNDAY
    start_time = Column(String(5), nullable=False)  # HH:MM local clinic time
    end_time = Column(String(5), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    doctor = relationship("DoctorProfile", back_populates="availability")


class BlockedSlot(Base):
    """Doctor downtime on a specific date. No start/end means the whole day."""

    __tablename__ = "blocked_slots"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctor_profiles.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=True)
    end_time = Column(String(5), nullable=True)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class AppointmentRules(Base):
    __tablename__ = "appointment_rules"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctor_profiles.id"), unique=True, nullable=False)

    # All windows are in minutes
    min_advance_booking = Column(Integer, default=60, nullable=False)
    max_advance_booking = Column(Integer, default=43200, nullable=False)  # 30 days
    allow_cancellation = Column(Boolean, default=True, nullable=False)
    cancellation_window = Column(Integer, default=240, nullable=False)
    allow_rescheduling = Column(Boolean, default=True, nullable=False)
    rescheduling_window = Column(Integer, default=240, nullable=False)
    max_reschedules = Column(Integer, default=2, nullable=False)
    max_bookings_per_day = Column(Integer, nullable=True)
    max_bookings_per_patient = Column(Integer, nullable=True)  # per patient per day
    require_payment = Column(Boolean, default=False, nullable=False)
    pending_payment_ttl = Column(Integer, default=30, nullable=False)
    send_reminder = Column(Boolean, default=True, nullable=False)
    reminder_hours = Column(Integer, default=24, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    doctor = relationship("DoctorProfile", back_populates="rules")


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = (UniqueConstraint("doctor_id", "phone_key", name="uq_patients_doctor_phone"),)

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctor_profiles.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=False)
    phone_key = Column(String(10), nullable=False, index=True)  # trailing 10 digits
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    appointments = relationship("Appointment", back_populates="patient")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Structural guard against double booking: one live row per doctor/date/start
        Index(
            "uq_appointments_live_slot",
            "doctor_id",
            "date",
            "start_time",
            unique=True,
            postgresql_where=text(_RELEASED_STATUS_SQL),
            sqlite_where=text(_RELEASED_STATUS_SQL),
        ),
        Index("ix_appointments_doctor_date", "doctor_id", "date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    booking_ref = Column(String(16), unique=True, index=True, nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctor_profiles.id"), nullable=False)
    consultation_type_id = Column(Integer, ForeignKey("consultation_types.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)

    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)  # start + duration

    # Snapshot of the consultation type at booking time
    duration = Column(Integer, nullable=False)
    fee = Column(Float, nullable=False, default=0.0)

    # Status workflow: PENDING → CONFIRMED → CHECKED_IN → IN_PROGRESS → COMPLETED
    # side branches: CANCELLED, NO_SHOW, RESCHEDULED (legacy rows only)
    status = Column(String(20), nullable=False, index=True)
    payment_status = Column(String(20), default="PENDING", nullable=False)  # PENDING, PAID
    payment_reference = Column(String(255), nullable=True)

    reschedule_count = Column(Integer, default=0, nullable=False)
    original_date = Column(Date, nullable=True)
    original_start_time = Column(String(5), nullable=True)

    reason_for_visit = Column(Text, nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    cancelled_by = Column(String(50), nullable=True)  # patient, staff:<role>, system

    created_at = Column(DateTime, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    reminder_sent_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    doctor = relationship("DoctorProfile", back_populates="appointments")
    patient = relationship("Patient", back_populates="appointments")
    consultation_type = relationship("ConsultationType")
