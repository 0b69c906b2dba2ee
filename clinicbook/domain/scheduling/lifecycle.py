"""
Appointment Lifecycle Manager

Owns the appointment state machine and the reserve-or-reject transaction:

    PENDING -> CONFIRMED -> CHECKED_IN -> IN_PROGRESS -> COMPLETED
    side branches: CANCELLED, NO_SHOW (RESCHEDULED only on legacy rows)

Writes for one doctor+date are serialized by an in-process lock and, on
PostgreSQL, a transaction-scoped advisory lock. The partial unique index on
(doctor_id, date, start_time) rejects whatever gets past both.
"""

import logging
import secrets
import threading
from contextlib import ExitStack, contextmanager
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import Appointment
from .availability import AvailabilityResolver
from .errors import (
    AppointmentNotFound,
    DailyBookingLimitReached,
    InvalidStatusTransition,
    PatientBookingLimitReached,
    SlotConflict,
    SlotNoLongerAvailable,
)
from .events import AppointmentEvent, EventKind, NotificationDispatcher, dispatcher
from .repository import SchedulingRepository
from .rules import BookingRuleEngine, appointment_start
from .schemas import (
    AppointmentStatus,
    BookingRules,
    ConsultationTypeInfo,
    PatientInfo,
    PaymentStatus,
    ScheduleConfig,
)
from .service import SchedulingService
from .time_calculator import add_minutes, combine, minutes_to_time, parse_date, to_local_minutes

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.CONFIRMED},
    AppointmentStatus.CONFIRMED: {AppointmentStatus.CHECKED_IN, AppointmentStatus.NO_SHOW},
    AppointmentStatus.CHECKED_IN: {AppointmentStatus.IN_PROGRESS, AppointmentStatus.NO_SHOW},
    AppointmentStatus.IN_PROGRESS: {AppointmentStatus.COMPLETED},
}

TRANSITION_EVENTS = {
    AppointmentStatus.CONFIRMED: EventKind.CONFIRMED,
    AppointmentStatus.CHECKED_IN: EventKind.CHECKED_IN,
    AppointmentStatus.IN_PROGRESS: EventKind.IN_PROGRESS,
    AppointmentStatus.COMPLETED: EventKind.COMPLETED,
    AppointmentStatus.NO_SHOW: EventKind.NO_SHOW,
}

ALTERNATIVES_LIMIT = 6
INSERT_ATTEMPTS = 3
PAYMENT_EXPIRED_REASON = "payment not received"

# Unambiguous characters only (no 0/O, 1/I/L)
BOOKING_REF_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
BOOKING_REF_PREFIX = "CB"
BOOKING_REF_LENGTH = 8

_registry_guard = threading.Lock()
_day_locks: dict[tuple[int, date], threading.Lock] = {}


def doctor_day_lock(doctor_id: int, day: date) -> threading.Lock:
    with _registry_guard:
        lock = _day_locks.get((doctor_id, day))
        if lock is None:
            lock = _day_locks[(doctor_id, day)] = threading.Lock()
        return lock


def generate_booking_ref() -> str:
    suffix = "".join(secrets.choice(BOOKING_REF_ALPHABET) for _ in range(BOOKING_REF_LENGTH))
    return f"{BOOKING_REF_PREFIX}{suffix}"


class AppointmentLifecycleManager:
    """Creates and mutates appointments without ever double-booking a slot"""

    def __init__(self, db: Session, notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.repo = SchedulingRepository()
        self.resolver = AvailabilityResolver(db)
        self.slots = SchedulingService(db)
        self.notifier = notifier or dispatcher

    # ============================================================================
    # HELPERS
    # ============================================================================

    @contextmanager
    def locked(self, doctor_id: int, days: Iterable[date]):
        """Hold the in-process lock for every doctor+date touched, in date order"""
        ordered = sorted(set(days))
        with ExitStack() as stack:
            for day in ordered:
                stack.enter_context(doctor_day_lock(doctor_id, day))
            for day in ordered:
                self.repo.lock_doctor_day(self.db, doctor_id, day)
            yield

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise AppointmentNotFound(f"Appointment {appointment_id} not found")
        return appointment

    def get_by_booking_ref(self, booking_ref: str) -> Appointment:
        appointment = self.repo.get_appointment_by_ref(self.db, booking_ref.strip().upper())
        if not appointment:
            raise AppointmentNotFound(f"No appointment found for booking reference {booking_ref}")
        return appointment

    def new_booking_ref(self) -> str:
        booking_ref = generate_booking_ref()
        while self.repo.booking_ref_exists(self.db, booking_ref):
            booking_ref = generate_booking_ref()
        return booking_ref

    def alternatives(
        self,
        schedule: ScheduleConfig,
        duration: int,
        target_date: date,
        now: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> list[dict]:
        """Freshly computed open slots on the same date, offered after a rejection"""
        slots = self.slots.compute_slots(
            schedule, duration, target_date, now, exclude_appointment_id
        )
        return [slot.model_dump() for slot in slots[:ALTERNATIVES_LIMIT]]

    def check_limits(
        self,
        rules: BookingRules,
        doctor_id: int,
        patient_id: Optional[int],
        target_date: date,
        exclude_appointment_id: Optional[int] = None,
    ) -> None:
        if rules.max_bookings_per_day is not None:
            booked = self.repo.list_appointments(
                self.db, doctor_id, target_date, exclude_id=exclude_appointment_id
            )
            if len(booked) >= rules.max_bookings_per_day:
                raise DailyBookingLimitReached(
                    f"The doctor is fully booked on {target_date.isoformat()}"
                )
        if rules.max_bookings_per_patient is not None and patient_id is not None:
            count = self.repo.count_patient_appointments(
                self.db, doctor_id, patient_id, target_date, exclude_id=exclude_appointment_id
            )
            if count >= rules.max_bookings_per_patient:
                raise PatientBookingLimitReached(
                    f"You already have {count} appointment(s) on {target_date.isoformat()}"
                )

    def publish(self, kind: EventKind, appointment: Appointment, now: datetime, **extra) -> None:
        self.notifier.publish(AppointmentEvent.from_appointment(kind, appointment, now, **extra))

    # ============================================================================
    # BOOK
    # ============================================================================

    def book(
        self,
        doctor_id: int,
        consultation_type_id: int,
        target_date,
        time: str,
        patient: PatientInfo,
        now: datetime,
        reason_for_visit: Optional[str] = None,
    ) -> Appointment:
        """
        Reserve a slot. The requested time is checked against slots recomputed
        inside the lock; client-side slot lists are never trusted.

        Raises:
            OutsideBookingWindow, SlotNoLongerAvailable, DailyBookingLimitReached,
            PatientBookingLimitReached: booking policy rejected the request
            SlotConflict: a concurrent booking won the slot
        """
        target_date = parse_date(target_date)
        start_time = minutes_to_time(to_local_minutes(time))

        with self.locked(doctor_id, [target_date]):
            try:
                schedule = self.slots.load_schedule(doctor_id)
                consultation_type = self.resolver.consultation_type(schedule, consultation_type_id)
                BookingRuleEngine(schedule.rules).check_book(combine(target_date, start_time), now)
            except Exception:
                self.db.rollback()
                raise

            for attempt in range(1, INSERT_ATTEMPTS + 1):
                try:
                    appointment = self.reserve(
                        schedule, consultation_type, target_date, start_time, patient, now,
                        reason_for_visit,
                    )
                    self.db.commit()
                    break
                except IntegrityError as e:
                    self.db.rollback()
                    if self.repo.is_live_slot_violation(e):
                        logger.warning(
                            f"⚠️ Lost race for doctor {doctor_id} {target_date.isoformat()} {start_time}"
                        )
                        raise SlotConflict(
                            alternatives=self.alternatives(
                                schedule, consultation_type.duration, target_date, now
                            )
                        ) from None
                    if attempt == INSERT_ATTEMPTS:
                        logger.error(f"❌ Booking insert failed for doctor {doctor_id}: {e.orig}")
                        raise
                    # Patient row or booking reference created concurrently; the retry sees it
                    logger.warning(f"⚠️ Retrying booking for doctor {doctor_id}: {e.orig}")
                except Exception:
                    self.db.rollback()
                    raise

        self.db.refresh(appointment)
        logger.info(
            f"✅ Booked {appointment.booking_ref} for doctor {doctor_id} "
            f"on {target_date.isoformat()} at {start_time} ({appointment.status})"
        )
        self.publish(EventKind.BOOKED, appointment, now)
        return appointment

    def reserve(
        self,
        schedule: ScheduleConfig,
        consultation_type: ConsultationTypeInfo,
        target_date: date,
        start_time: str,
        patient: PatientInfo,
        now: datetime,
        reason_for_visit: Optional[str] = None,
    ) -> Appointment:
        """Stage the appointment row inside the caller's transaction"""
        doctor_id = schedule.doctor_id
        duration = consultation_type.duration

        open_slots = self.slots.compute_slots(schedule, duration, target_date, now)
        if start_time not in {slot.time for slot in open_slots}:
            logger.warning(
                f"⚠️ Slot {target_date.isoformat()} {start_time} unavailable for doctor {doctor_id}"
            )
            raise SlotNoLongerAvailable(
                alternatives=[s.model_dump() for s in open_slots[:ALTERNATIVES_LIMIT]]
            )

        record = self.repo.get_or_create_patient(
            self.db, doctor_id, patient.name, patient.phone, patient.email
        )
        self.check_limits(schedule.rules, doctor_id, record.id, target_date)

        require_payment = schedule.rules.require_payment
        appointment = Appointment(
            booking_ref=self.new_booking_ref(),
            doctor_id=doctor_id,
            consultation_type_id=consultation_type.id,
            patient_id=record.id,
            date=target_date,
            start_time=start_time,
            end_time=add_minutes(start_time, duration),
            duration=duration,
            fee=consultation_type.fee,
            status=(
                AppointmentStatus.PENDING.value
                if require_payment
                else AppointmentStatus.CONFIRMED.value
            ),
            payment_status=PaymentStatus.PENDING.value,
            reason_for_visit=reason_for_visit,
            created_at=now,
            confirmed_at=None if require_payment else now,
        )
        return self.repo.add_appointment(self.db, appointment)

    # ============================================================================
    # CANCEL
    # ============================================================================

    def cancel(
        self,
        appointment_id: int,
        now: datetime,
        actor: str = "patient",
        reason: Optional[str] = None,
    ) -> Appointment:
        appointment = self.get_appointment(appointment_id)

        with self.locked(appointment.doctor_id, [appointment.date]):
            try:
                self.db.refresh(appointment)
                schedule = self.slots.load_schedule(appointment.doctor_id)
                BookingRuleEngine(schedule.rules).check_cancel(appointment, now)

                appointment.status = AppointmentStatus.CANCELLED.value
                appointment.cancelled_at = now
                appointment.cancelled_by = actor
                appointment.cancellation_reason = reason
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        logger.info(f"✅ Cancelled {appointment.booking_ref} by {actor}")
        self.publish(EventKind.CANCELLED, appointment, now, reason=reason)
        return appointment

    # ============================================================================
    # RESCHEDULE
    # ============================================================================

    def reschedule(
        self, appointment_id: int, new_date, new_time: str, now: datetime
    ) -> Appointment:
        """
        Move an appointment in place. The row keeps its id and booking reference;
        ``reschedule_count`` goes up and the first original date/time is kept.
        """
        new_date = parse_date(new_date)
        new_time = minutes_to_time(to_local_minutes(new_time))
        appointment = self.get_appointment(appointment_id)
        doctor_id = appointment.doctor_id

        with self.locked(doctor_id, [appointment.date, new_date]):
            try:
                self.db.refresh(appointment)
                schedule = self.slots.load_schedule(doctor_id)
                engine = BookingRuleEngine(schedule.rules)
                engine.check_reschedule(appointment, now)
                engine.check_book(combine(new_date, new_time), now)

                open_slots = self.slots.compute_slots(
                    schedule, appointment.duration, new_date, now, appointment.id
                )
                if new_time not in {slot.time for slot in open_slots}:
                    raise SlotNoLongerAvailable(
                        alternatives=[s.model_dump() for s in open_slots[:ALTERNATIVES_LIMIT]]
                    )
                self.check_limits(
                    schedule.rules, doctor_id, appointment.patient_id, new_date, appointment.id
                )

                previous_date = appointment.date
                previous_time = appointment.start_time
                if appointment.reschedule_count == 0:
                    appointment.original_date = previous_date
                    appointment.original_start_time = previous_time

                appointment.date = new_date
                appointment.start_time = new_time
                appointment.end_time = add_minutes(new_time, appointment.duration)
                appointment.reschedule_count += 1
                if (
                    appointment.status == AppointmentStatus.PENDING.value
                    and not schedule.rules.require_payment
                ):
                    appointment.status = AppointmentStatus.CONFIRMED.value
                    appointment.confirmed_at = now
                self.db.flush()
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                if not self.repo.is_live_slot_violation(e):
                    raise
                raise SlotConflict(
                    alternatives=self.alternatives(
                        schedule, appointment.duration, new_date, now, appointment.id
                    )
                ) from None
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        logger.info(
            f"✅ Rescheduled {appointment.booking_ref} from {previous_date.isoformat()} {previous_time} "
            f"to {new_date.isoformat()} {new_time} (#{appointment.reschedule_count})"
        )
        self.publish(
            EventKind.RESCHEDULED,
            appointment,
            now,
            previous_date=previous_date,
            previous_start_time=previous_time,
        )
        return appointment

    # ============================================================================
    # STATUS WORKFLOW
    # ============================================================================

    def transition(
        self, appointment_id: int, target: AppointmentStatus, now: datetime
    ) -> Appointment:
        """Staff-driven status change along the allowed transition table"""
        target = AppointmentStatus(target)
        if target == AppointmentStatus.CANCELLED:
            raise InvalidStatusTransition("Use cancellation to cancel an appointment")

        appointment = self.get_appointment(appointment_id)
        with self.locked(appointment.doctor_id, [appointment.date]):
            try:
                self.db.refresh(appointment)
                current = AppointmentStatus(appointment.status)
                if target not in ALLOWED_TRANSITIONS.get(current, set()):
                    raise InvalidStatusTransition(
                        f"Cannot change status from {current.value} to {target.value}"
                    )
                appointment.status = target.value
                if target == AppointmentStatus.CONFIRMED:
                    appointment.confirmed_at = now
                elif target == AppointmentStatus.COMPLETED:
                    appointment.completed_at = now
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        logger.info(f"✅ {appointment.booking_ref}: {current.value} → {target.value}")
        self.publish(TRANSITION_EVENTS[target], appointment, now)
        return appointment

    def mark_paid(
        self, appointment_id: int, now: datetime, payment_reference: Optional[str] = None
    ) -> Appointment:
        """Record a captured payment. A PENDING reservation becomes CONFIRMED."""
        appointment = self.get_appointment(appointment_id)
        with self.locked(appointment.doctor_id, [appointment.date]):
            try:
                self.db.refresh(appointment)
                status = AppointmentStatus(appointment.status)
                if status in (AppointmentStatus.CANCELLED, AppointmentStatus.RESCHEDULED):
                    raise InvalidStatusTransition(
                        f"Cannot record payment for an appointment that is {status.value}"
                    )
                confirmed = status == AppointmentStatus.PENDING
                appointment.payment_status = PaymentStatus.PAID.value
                if payment_reference:
                    appointment.payment_reference = payment_reference
                if confirmed:
                    appointment.status = AppointmentStatus.CONFIRMED.value
                    appointment.confirmed_at = now
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        logger.info(f"💳 Payment recorded for {appointment.booking_ref}")
        if confirmed:
            self.publish(EventKind.CONFIRMED, appointment, now)
        return appointment

    # ============================================================================
    # SWEEPS (run by the worker)
    # ============================================================================

    def expire_unpaid(self, now: datetime) -> int:
        """Cancel PENDING reservations left unpaid past the doctor's payment TTL"""
        expired = 0
        rules_by_doctor: dict[int, BookingRules] = {}

        for appointment in self.repo.list_unpaid_pending(self.db, created_before=now):
            doctor_id = appointment.doctor_id
            if doctor_id not in rules_by_doctor:
                stored = self.repo.get_rules(self.db, doctor_id)
                rules_by_doctor[doctor_id] = (
                    BookingRules.model_validate(stored) if stored else BookingRules()
                )
            ttl = timedelta(minutes=rules_by_doctor[doctor_id].pending_payment_ttl)
            if appointment.created_at + ttl > now:
                continue

            with self.locked(doctor_id, [appointment.date]):
                try:
                    self.db.refresh(appointment)
                    if (
                        appointment.status != AppointmentStatus.PENDING.value
                        or appointment.payment_status == PaymentStatus.PAID.value
                    ):
                        self.db.rollback()
                        continue
                    appointment.status = AppointmentStatus.CANCELLED.value
                    appointment.cancelled_at = now
                    appointment.cancelled_by = "system"
                    appointment.cancellation_reason = PAYMENT_EXPIRED_REASON
                    self.db.commit()
                except Exception:
                    self.db.rollback()
                    raise

            expired += 1
            logger.info(f"⏰ Released unpaid reservation {appointment.booking_ref}")
            self.publish(EventKind.EXPIRED, appointment, now, reason=PAYMENT_EXPIRED_REASON)

        return expired

    def send_reminders(self, now: datetime) -> int:
        """Emit REMINDER events for confirmed appointments starting within reminder_hours"""
        sent = 0
        horizon = now + timedelta(hours=self.repo.max_reminder_hours(self.db))
        rules_by_doctor: dict[int, BookingRules] = {}

        for appointment in self.repo.list_reminder_candidates(self.db, now.date(), horizon.date()):
            doctor_id = appointment.doctor_id
            if doctor_id not in rules_by_doctor:
                stored = self.repo.get_rules(self.db, doctor_id)
                rules_by_doctor[doctor_id] = (
                    BookingRules.model_validate(stored) if stored else BookingRules()
                )
            rules = rules_by_doctor[doctor_id]
            if not rules.send_reminder:
                continue

            start = appointment_start(appointment)
            if not now < start <= now + timedelta(hours=rules.reminder_hours):
                continue

            appointment.reminder_sent_at = now
            self.db.commit()
            sent += 1
            self.publish(EventKind.REMINDER, appointment, now)

        return sent
