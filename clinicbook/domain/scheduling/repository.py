"""Scheduling repository - Database operations for the booking engine"""

import zlib
from datetime import date, datetime
from typing import Optional

from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ...models import (
    Appointment,
    AppointmentRules,
    AvailabilitySlot,
    BlockedSlot,
    ConsultationType,
    DoctorProfile,
    Patient,
)
from ...shared.validators import phone_key
from .schemas import RELEASED_STATUSES, AppointmentStatus, BookingRules, DayOfWeek, PaymentStatus

_RELEASED = [s.value for s in RELEASED_STATUSES]

LIVE_SLOT_INDEX = "uq_appointments_live_slot"


class SchedulingRepository:
    """Repository for scheduling database operations"""

    # Settings collaborator reads
    @staticmethod
    def get_doctor(db: Session, doctor_id: int) -> Optional[DoctorProfile]:
        return db.query(DoctorProfile).filter(DoctorProfile.id == doctor_id).first()

    @staticmethod
    def get_consultation_type(db: Session, consultation_type_id: int) -> Optional[ConsultationType]:
        return db.query(ConsultationType).filter(ConsultationType.id == consultation_type_id).first()

    @staticmethod
    def list_consultation_types(db: Session, doctor_id: int) -> list[ConsultationType]:
        return (
            db.query(ConsultationType)
            .filter(ConsultationType.doctor_id == doctor_id)
            .order_by(ConsultationType.id)
            .all()
        )

    @staticmethod
    def get_availability(
        db: Session, doctor_id: int, day: Optional[DayOfWeek] = None
    ) -> list[AvailabilitySlot]:
        """Active weekly rules for a doctor, optionally for a single weekday"""
        query = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.doctor_id == doctor_id, AvailabilitySlot.is_active.is_(True)
        )
        if day is not None:
            query = query.filter(AvailabilitySlot.day_of_week == day.value)
        return query.order_by(AvailabilitySlot.start_time).all()

    @staticmethod
    def get_rules(db: Session, doctor_id: int) -> Optional[AppointmentRules]:
        return db.query(AppointmentRules).filter(AppointmentRules.doctor_id == doctor_id).first()

    @staticmethod
    def get_blocked_slots(db: Session, doctor_id: int, day: date) -> list[BlockedSlot]:
        return (
            db.query(BlockedSlot)
            .filter(BlockedSlot.doctor_id == doctor_id, BlockedSlot.date == day)
            .all()
        )

    # Appointment store
    @staticmethod
    def list_appointments(
        db: Session, doctor_id: int, day: date, exclude_id: Optional[int] = None
    ) -> list[Appointment]:
        """Appointments that still occupy time on the given day"""
        query = db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date == day,
            Appointment.status.notin_(_RELEASED),
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.start_time).all()

    @staticmethod
    def count_patient_appointments(
        db: Session, doctor_id: int, patient_id: int, day: date, exclude_id: Optional[int] = None
    ) -> int:
        query = db.query(func.count(Appointment.id)).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.patient_id == patient_id,
            Appointment.date == day,
            Appointment.status.notin_(_RELEASED),
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.scalar() or 0

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.patient))
            .filter(Appointment.id == appointment_id)
            .first()
        )

    @staticmethod
    def get_appointment_by_ref(db: Session, booking_ref: str) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.patient))
            .filter(Appointment.booking_ref == booking_ref)
            .first()
        )

    @staticmethod
    def booking_ref_exists(db: Session, booking_ref: str) -> bool:
        return (
            db.query(Appointment.id).filter(Appointment.booking_ref == booking_ref).first()
            is not None
        )

    @staticmethod
    def search_appointments(
        db: Session,
        doctor_id: int,
        day: Optional[date] = None,
        status: Optional[AppointmentStatus] = None,
    ) -> list[Appointment]:
        query = (
            db.query(Appointment)
            .options(joinedload(Appointment.patient))
            .filter(Appointment.doctor_id == doctor_id)
        )
        if day is not None:
            query = query.filter(Appointment.date == day)
        if status is not None:
            query = query.filter(Appointment.status == status.value)
        return query.order_by(Appointment.date, Appointment.start_time).all()

    @staticmethod
    def add_appointment(db: Session, appointment: Appointment) -> Appointment:
        """Stage a new appointment; the caller owns the commit"""
        db.add(appointment)
        db.flush()
        return appointment

    # Patient directory
    @staticmethod
    def find_patient(db: Session, doctor_id: int, key: str) -> Optional[Patient]:
        return (
            db.query(Patient)
            .filter(Patient.doctor_id == doctor_id, Patient.phone_key == key)
            .first()
        )

    @staticmethod
    def get_or_create_patient(
        db: Session, doctor_id: int, name: str, phone: str, email: Optional[str] = None
    ) -> Patient:
        """Patients are keyed on the trailing 10 digits, whatever format the phone came in"""
        key = phone_key(phone)
        patient = SchedulingRepository.find_patient(db, doctor_id, key)
        if patient:
            patient.name = name
            patient.phone = phone
            if email:
                patient.email = email
        else:
            patient = Patient(doctor_id=doctor_id, name=name, phone=phone, phone_key=key, email=email)
            db.add(patient)
        db.flush()
        return patient

    @staticmethod
    def list_patient_appointments(
        db: Session, phone: str, from_day: date, doctor_id: Optional[int] = None
    ) -> list[Appointment]:
        """Upcoming PENDING/CONFIRMED appointments for a phone, across doctors unless one is given"""
        query = (
            db.query(Appointment)
            .join(Patient, Appointment.patient_id == Patient.id)
            .options(joinedload(Appointment.patient))
            .filter(
                Patient.phone_key == phone_key(phone),
                Appointment.date >= from_day,
                Appointment.status.in_(
                    [AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value]
                ),
            )
        )
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        return query.order_by(Appointment.date, Appointment.start_time).all()

    @staticmethod
    def is_live_slot_violation(error: IntegrityError) -> bool:
        """True when the insert tripped the live-slot index rather than another constraint"""
        message = str(error.orig)
        # PostgreSQL reports the index name, SQLite the indexed columns
        return LIVE_SLOT_INDEX in message or "appointments.start_time" in message

    # Dashboard
    @staticmethod
    def count_by_status(db: Session, doctor_id: int, day: Optional[date] = None) -> dict[str, int]:
        query = db.query(Appointment.status, func.count(Appointment.id)).filter(
            Appointment.doctor_id == doctor_id
        )
        if day is not None:
            query = query.filter(Appointment.date == day)
        return {status: count for status, count in query.group_by(Appointment.status).all()}

    @staticmethod
    def completed_revenue(db: Session, doctor_id: int) -> float:
        value = (
            db.query(func.sum(Appointment.fee))
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.status == AppointmentStatus.COMPLETED.value,
            )
            .scalar()
        )
        return float(value or 0)

    # Worker queries
    @staticmethod
    def list_unpaid_pending(db: Session, created_before: datetime) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.patient))
            .filter(
                Appointment.status == AppointmentStatus.PENDING.value,
                Appointment.payment_status != PaymentStatus.PAID.value,
                Appointment.created_at < created_before,
            )
            .all()
        )

    @staticmethod
    def list_reminder_candidates(db: Session, start_day: date, end_day: date) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.patient))
            .filter(
                Appointment.status == AppointmentStatus.CONFIRMED.value,
                Appointment.reminder_sent_at.is_(None),
                Appointment.date >= start_day,
                Appointment.date <= end_day,
            )
            .all()
        )

    @staticmethod
    def max_reminder_hours(db: Session) -> int:
        """Widest reminder window in use; doctors without a rules row use the default"""
        value = db.query(func.max(AppointmentRules.reminder_hours)).scalar()
        return max(value or 0, BookingRules().reminder_hours)

    # Locking
    @staticmethod
    def lock_doctor_day(db: Session, doctor_id: int, day: date) -> None:
        """
        Serialize writers for one doctor+date inside the current transaction.
        PostgreSQL takes a transaction-scoped advisory lock; other backends rely on
        the in-process lock held by the lifecycle manager.
        """
        if db.get_bind().dialect.name != "postgresql":
            return
        key = zlib.crc32(f"{doctor_id}:{day.isoformat()}".encode())
        db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})
