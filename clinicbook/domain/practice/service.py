"""Practice service - clinic settings consumed by the scheduling engine"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ...cache import schedule_cache
from ...models import AppointmentRules, AvailabilitySlot, BlockedSlot, ConsultationType, DoctorProfile
from ..scheduling.errors import (
    ConfigurationError,
    ConflictError,
    ConsultationTypeNotFound,
    DoctorNotFound,
    NotFoundError,
)
from ..scheduling.schemas import BookingRules
from ..scheduling.time_calculator import minutes_to_time, to_local_minutes
from .repository import PracticeRepository
from .schemas import (
    AvailabilityUpdate,
    BlockedSlotCreate,
    ConsultationTypeCreate,
    ConsultationTypeUpdate,
    DoctorCreate,
    DoctorUpdate,
    RulesUpdate,
)

logger = logging.getLogger(__name__)


def normalize_range(start: str, end: str) -> tuple[str, str]:
    """Validate an HH:MM range; start must come before end"""
    start_minutes = to_local_minutes(start)
    end_minutes = to_local_minutes(end)
    if end_minutes <= start_minutes:
        raise ConfigurationError(f"Start time {start} must be before end time {end}")
    return minutes_to_time(start_minutes), minutes_to_time(end_minutes)


class PracticeService:
    """Service layer for doctor settings"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = PracticeRepository()

    # ============================================================================
    # DOCTOR PROFILE
    # ============================================================================

    def get_doctor(self, doctor_id: int) -> DoctorProfile:
        doctor = self.repo.get_doctor(self.db, doctor_id)
        if not doctor:
            raise DoctorNotFound(f"Doctor {doctor_id} not found")
        return doctor

    def get_doctor_by_slug(self, slug: str) -> DoctorProfile:
        """Public lookup; inactive doctors are hidden"""
        doctor = self.repo.get_doctor_by_slug(self.db, slug.strip().lower())
        if not doctor or not doctor.is_active:
            raise DoctorNotFound(f"No doctor found for '{slug}'")
        return doctor

    def get_public_profile(
        self, slug: str
    ) -> tuple[DoctorProfile, list[ConsultationType], list[AvailabilitySlot]]:
        doctor = self.get_doctor_by_slug(slug)
        consultation_types = [
            ct for ct in self.repo.get_consultation_types(self.db, doctor.id) if ct.is_active
        ]
        availability = [s for s in self.repo.get_availability(self.db, doctor.id) if s.is_active]
        return doctor, consultation_types, availability

    def create_doctor(self, data: DoctorCreate) -> DoctorProfile:
        if self.repo.slug_exists(self.db, data.slug):
            raise ConflictError(f"Slug '{data.slug}' is already in use")
        doctor = self.repo.create_doctor(
            self.db,
            name=data.name,
            slug=data.slug,
            specialization=data.specialization,
            default_duration=data.defaultDuration,
            buffer_time=data.bufferTime,
        )
        logger.info(f"✅ Created doctor {doctor.id} ({doctor.slug})")
        return doctor

    def update_doctor(self, doctor_id: int, data: DoctorUpdate) -> DoctorProfile:
        doctor = self.repo.update(
            self.db,
            self.get_doctor(doctor_id),
            name=data.name,
            specialization=data.specialization,
            default_duration=data.defaultDuration,
            buffer_time=data.bufferTime,
            is_active=data.isActive,
        )
        schedule_cache.invalidate(doctor.id)
        return doctor

    # ============================================================================
    # WEEKLY AVAILABILITY
    # ============================================================================

    def get_availability(self, doctor_id: int) -> list[AvailabilitySlot]:
        return self.repo.get_availability(self.db, self.get_doctor(doctor_id).id)

    def replace_availability(self, doctor_id: int, data: AvailabilityUpdate) -> list[AvailabilitySlot]:
        """Validate every window before touching the stored schedule"""
        doctor = self.get_doctor(doctor_id)
        windows = []
        for window in data.windows:
            start, end = normalize_range(window.startTime, window.endTime)
            windows.append(
                {
                    "day_of_week": window.dayOfWeek.value,
                    "start_time": start,
                    "end_time": end,
                    "is_active": window.isActive,
                }
            )

        slots = self.repo.replace_availability(self.db, doctor.id, windows)
        schedule_cache.invalidate(doctor.id)
        logger.info(f"📅 Replaced weekly availability for doctor {doctor.id} ({len(slots)} windows)")
        return slots

    # ============================================================================
    # CONSULTATION TYPES
    # ============================================================================

    def get_consultation_types(self, doctor_id: int) -> list[ConsultationType]:
        return self.repo.get_consultation_types(self.db, self.get_doctor(doctor_id).id)

    def create_consultation_type(self, doctor_id: int, data: ConsultationTypeCreate) -> ConsultationType:
        doctor = self.get_doctor(doctor_id)
        consultation_type = self.repo.create_consultation_type(
            self.db,
            doctor.id,
            name=data.name,
            kind=data.kind.value,
            fee=data.fee,
            duration=data.duration,
            is_active=data.isActive,
        )
        schedule_cache.invalidate(doctor.id)
        return consultation_type

    def update_consultation_type(
        self, consultation_type_id: int, data: ConsultationTypeUpdate
    ) -> ConsultationType:
        """Existing appointments keep the fee and duration they were booked with"""
        consultation_type = self.repo.get_consultation_type(self.db, consultation_type_id)
        if not consultation_type:
            raise ConsultationTypeNotFound(f"Consultation type {consultation_type_id} not found")
        consultation_type = self.repo.update(
            self.db,
            consultation_type,
            name=data.name,
            kind=data.kind.value if data.kind else None,
            fee=data.fee,
            duration=data.duration,
            is_active=data.isActive,
        )
        schedule_cache.invalidate(consultation_type.doctor_id)
        return consultation_type

    # ============================================================================
    # BOOKING RULES
    # ============================================================================

    def get_rules(self, doctor_id: int) -> BookingRules:
        doctor = self.get_doctor(doctor_id)
        stored: Optional[AppointmentRules] = self.repo.get_rules(self.db, doctor.id)
        return BookingRules.model_validate(stored) if stored else BookingRules()

    def set_rules(self, doctor_id: int, data: RulesUpdate) -> BookingRules:
        """Reject inconsistent rules instead of storing them"""
        doctor = self.get_doctor(doctor_id)
        rules = BookingRules(
            min_advance_booking=data.minAdvanceBooking,
            max_advance_booking=data.maxAdvanceBooking,
            allow_cancellation=data.allowCancellation,
            cancellation_window=data.cancellationWindow,
            allow_rescheduling=data.allowRescheduling,
            rescheduling_window=data.reschedulingWindow,
            max_reschedules=data.maxReschedules,
            max_bookings_per_day=data.maxBookingsPerDay,
            max_bookings_per_patient=data.maxBookingsPerPatient,
            require_payment=data.requirePayment,
            pending_payment_ttl=data.pendingPaymentTtl,
            send_reminder=data.sendReminder,
            reminder_hours=data.reminderHours,
        )
        try:
            rules.ensure_consistent()
        except ConfigurationError as e:
            logger.error(f"❌ Rejected rules for doctor {doctor.id}: {e.message}")
            raise

        stored = self.repo.save_rules(self.db, doctor.id, **rules.model_dump())
        schedule_cache.invalidate(doctor.id)
        return BookingRules.model_validate(stored)

    # ============================================================================
    # BLOCKED SLOTS
    # ============================================================================

    def get_blocked_slots(
        self, doctor_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[BlockedSlot]:
        return self.repo.get_blocked_slots(self.db, self.get_doctor(doctor_id).id, start, end)

    def add_blocked_slot(self, doctor_id: int, data: BlockedSlotCreate) -> BlockedSlot:
        """Block part of a day, or the whole day when no times are given"""
        doctor = self.get_doctor(doctor_id)
        if (data.startTime is None) != (data.endTime is None):
            raise ConfigurationError("Provide both start and end time, or neither for a full day")

        start = end = None
        if data.startTime is not None:
            start, end = normalize_range(data.startTime, data.endTime)

        blocked = self.repo.create_blocked_slot(
            self.db, doctor.id, date=data.date, start_time=start, end_time=end, reason=data.reason
        )
        logger.info(
            f"🚫 Blocked {data.date.isoformat()} {start or 'all day'}"
            f"{'-' + end if end else ''} for doctor {doctor.id}"
        )
        return blocked

    def remove_blocked_slot(self, blocked_slot_id: int) -> None:
        blocked = self.repo.get_blocked_slot(self.db, blocked_slot_id)
        if not blocked:
            raise NotFoundError(f"Blocked slot {blocked_slot_id} not found")
        self.repo.delete_blocked_slot(self.db, blocked)
