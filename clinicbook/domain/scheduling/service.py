"""Scheduling service - read side of the booking engine (dates, slots, stats)"""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...cache import schedule_cache
from ...config import DEFAULT_AVAILABLE_DATE_RANGE, MAX_AVAILABLE_DATE_RANGE
from ...models import Appointment
from .availability import AvailabilityResolver, blocked_intervals, resolve_windows
from .repository import SchedulingRepository
from .schemas import (
    AppointmentStats,
    AppointmentStatus,
    AvailableDate,
    AvailableDatesResponse,
    BusyInterval,
    ConsultationTypeInfo,
    NextSlotResponse,
    ScheduleConfig,
    SlotListResponse,
    SlotStats,
    TimeSlot,
)
from .slots import SlotGenerator, group_slots, summarize
from .time_calculator import date_range, day_of_week, parse_date, to_local_minutes

logger = logging.getLogger(__name__)


def display_date(day: date) -> str:
    return day.strftime("%A, %d %B %Y")


class SchedulingService:
    """Turns stored schedule data into bookable slots for a date"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()
        self.resolver = AvailabilityResolver(db)

    # ============================================================================
    # SCHEDULE DATA
    # ============================================================================

    def load_schedule(self, doctor_id: int, use_cache: bool = False) -> ScheduleConfig:
        """Schedule configuration for a doctor. Cached copies are for slot listing only."""
        if use_cache:
            cached = schedule_cache.load(doctor_id)
            if cached:
                return cached

        schedule = self.resolver.load_schedule(doctor_id)
        if use_cache:
            schedule_cache.store(schedule)
        return schedule

    @staticmethod
    def duration_for(
        schedule: ScheduleConfig, consultation_type: Optional[ConsultationTypeInfo]
    ) -> int:
        return consultation_type.duration if consultation_type else schedule.default_duration

    def booked_intervals(
        self, doctor_id: int, target_date: date, exclude_appointment_id: Optional[int] = None
    ) -> list[BusyInterval]:
        return [
            BusyInterval(
                start_minutes=to_local_minutes(a.start_time),
                end_minutes=to_local_minutes(a.end_time),
                appointment_id=a.id,
            )
            for a in self.repo.list_appointments(
                self.db, doctor_id, target_date, exclude_id=exclude_appointment_id
            )
        ]

    def evaluate_day(
        self,
        schedule: ScheduleConfig,
        duration: int,
        target_date: date,
        now: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> list[TimeSlot]:
        """
        Every candidate slot for the date, each flagged available or not.

        ``exclude_appointment_id`` leaves one appointment out of the busy set so it
        does not block its own reschedule.
        """
        # Built first so inconsistent rules surface even on days without windows
        generator = SlotGenerator(duration, schedule.buffer_time, schedule.rules)

        blocked = self.repo.get_blocked_slots(self.db, schedule.doctor_id, target_date)
        windows = resolve_windows(schedule.availability, target_date, blocked)
        if not windows:
            return []

        booked = self.booked_intervals(schedule.doctor_id, target_date, exclude_appointment_id)
        return generator.evaluate(target_date, windows, booked, blocked_intervals(blocked), now)

    def compute_slots(
        self,
        schedule: ScheduleConfig,
        duration: int,
        target_date: date,
        now: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> list[TimeSlot]:
        """Bookable slots only, ordered by start time"""
        return [
            slot
            for slot in self.evaluate_day(
                schedule, duration, target_date, now, exclude_appointment_id
            )
            if slot.available
        ]

    # ============================================================================
    # BOOKING SURFACE
    # ============================================================================

    def list_slots(
        self, doctor_id: int, target_date, consultation_type_id: int, now: datetime
    ) -> SlotListResponse:
        target_date = parse_date(target_date)
        schedule = self.load_schedule(doctor_id, use_cache=True)
        consultation_type = self.resolver.consultation_type(schedule, consultation_type_id)

        slots = self.compute_slots(schedule, consultation_type.duration, target_date, now)
        logger.debug(f"📅 {len(slots)} slots for doctor {doctor_id} on {target_date.isoformat()}")
        return SlotListResponse(
            date=target_date,
            displayDate=display_date(target_date),
            slots=slots,
            grouped=group_slots(slots),
            summary=summarize(slots),
        )

    def list_available_dates(
        self,
        doctor_id: int,
        now: datetime,
        range_days: int = DEFAULT_AVAILABLE_DATE_RANGE,
        consultation_type_id: Optional[int] = None,
    ) -> AvailableDatesResponse:
        """Dates from today with at least one bookable slot"""
        range_days = max(1, min(range_days, MAX_AVAILABLE_DATE_RANGE))
        schedule = self.load_schedule(doctor_id, use_cache=True)
        consultation_type = (
            self.resolver.consultation_type(schedule, consultation_type_id)
            if consultation_type_id is not None
            else None
        )
        duration = self.duration_for(schedule, consultation_type)

        dates = []
        for day in date_range(now.date(), range_days):
            if self.compute_slots(schedule, duration, day, now):
                dates.append(
                    AvailableDate(
                        date=day, dayOfWeek=day_of_week(day), displayDate=display_date(day)
                    )
                )
        return AvailableDatesResponse(dates=dates, totalDays=len(dates))

    def next_available_slot(
        self,
        doctor_id: int,
        consultation_type_id: int,
        now: datetime,
        range_days: int = DEFAULT_AVAILABLE_DATE_RANGE,
    ) -> NextSlotResponse:
        range_days = max(1, min(range_days, MAX_AVAILABLE_DATE_RANGE))
        schedule = self.load_schedule(doctor_id, use_cache=True)
        consultation_type = self.resolver.consultation_type(schedule, consultation_type_id)

        for day in date_range(now.date(), range_days):
            slots = self.compute_slots(schedule, consultation_type.duration, day, now)
            if slots:
                return NextSlotResponse(date=day.isoformat(), slot=slots[0])
        return NextSlotResponse(message=f"No available slots in the next {range_days} days")

    def slot_stats(
        self, doctor_id: int, target_date, consultation_type_id: int, now: datetime
    ) -> SlotStats:
        target_date = parse_date(target_date)
        schedule = self.load_schedule(doctor_id)
        consultation_type = self.resolver.consultation_type(schedule, consultation_type_id)

        slots = self.evaluate_day(schedule, consultation_type.duration, target_date, now)
        total = len(slots)
        available = sum(1 for s in slots if s.available)
        unavailable = total - available
        return SlotStats(
            totalSlots=total,
            availableSlots=available,
            bookedSlots=unavailable,
            utilization=round(unavailable / total * 100) if total else 0,
        )

    # ============================================================================
    # DASHBOARD
    # ============================================================================

    def appointment_stats(self, doctor_id: int, today: date) -> AppointmentStats:
        """Counters for the clinic dashboard; revenue is the sum of completed fees"""
        doctor = self.resolver.get_doctor(doctor_id)
        by_status = self.repo.count_by_status(self.db, doctor.id)
        today_counts = self.repo.count_by_status(self.db, doctor.id, today)
        return AppointmentStats(
            totalAppointments=sum(by_status.values()),
            todayAppointments=today_counts.get(AppointmentStatus.PENDING.value, 0)
            + today_counts.get(AppointmentStatus.CONFIRMED.value, 0),
            completedToday=today_counts.get(AppointmentStatus.COMPLETED.value, 0),
            pendingCount=by_status.get(AppointmentStatus.PENDING.value, 0),
            cancelledCount=by_status.get(AppointmentStatus.CANCELLED.value, 0),
            byStatus=by_status,
            totalRevenue=self.repo.completed_revenue(self.db, doctor.id),
        )

    def patient_appointments(
        self, phone: str, today: date, doctor_id: Optional[int] = None
    ) -> list[Appointment]:
        return self.repo.list_patient_appointments(self.db, phone, today, doctor_id)
