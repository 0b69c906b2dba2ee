"""Availability Resolver - weekly recurring rules to concrete windows for one date"""

import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...models import BlockedSlot, DoctorProfile
from .errors import ConsultationTypeInactive, ConsultationTypeNotFound, DoctorNotFound
from .repository import SchedulingRepository
from .schemas import (
    AvailabilityRule,
    BookingRules,
    BusyInterval,
    ConsultationTypeInfo,
    ScheduleConfig,
    TimeWindow,
)
from .time_calculator import day_of_week, to_local_minutes

logger = logging.getLogger(__name__)


def resolve_windows(
    rules: Iterable[AvailabilityRule], target_date: date, blocked: Iterable[BlockedSlot] = ()
) -> list[TimeWindow]:
    """
    Emit one window per active rule matching the weekday of ``target_date``.

    Windows on the same day are kept separate; the gap between two rules is
    deliberate downtime (e.g. lunch). A whole-day block removes every window.
    """
    if any(b.start_time is None and b.end_time is None for b in blocked):
        return []

    weekday = day_of_week(target_date).value
    windows = []
    for rule in rules:
        if not rule.is_active or rule.day_of_week != weekday:
            continue
        start_minutes = to_local_minutes(rule.start_time)
        end_minutes = to_local_minutes(rule.end_time)
        if end_minutes <= start_minutes:
            logger.warning(
                f"⚠️ Ignoring availability rule {rule.id}: start {rule.start_time} is not before end {rule.end_time}"
            )
            continue
        windows.append(
            TimeWindow(
                start=rule.start_time,
                end=rule.end_time,
                start_minutes=start_minutes,
                end_minutes=end_minutes,
            )
        )

    return sorted(windows, key=lambda w: (w.start_minutes, w.end_minutes))


def blocked_intervals(blocked: Iterable[BlockedSlot]) -> list[BusyInterval]:
    """Partial blocks as minute intervals (whole-day blocks are handled by resolve_windows)."""
    intervals = []
    for b in blocked:
        if b.start_time and b.end_time:
            intervals.append(
                BusyInterval(
                    start_minutes=to_local_minutes(b.start_time),
                    end_minutes=to_local_minutes(b.end_time),
                )
            )
    return intervals


class AvailabilityResolver:
    """Reads a doctor's schedule from the settings store and resolves it for a date"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    def get_doctor(self, doctor_id: int) -> DoctorProfile:
        doctor = self.repo.get_doctor(self.db, doctor_id)
        if not doctor or not doctor.is_active:
            raise DoctorNotFound(f"Doctor {doctor_id} not found or unavailable")
        return doctor

    def load_schedule(self, doctor_id: int) -> ScheduleConfig:
        doctor = self.get_doctor(doctor_id)
        stored_rules = self.repo.get_rules(self.db, doctor.id)
        return ScheduleConfig(
            doctor_id=doctor.id,
            default_duration=doctor.default_duration,
            buffer_time=doctor.buffer_time,
            availability=[
                AvailabilityRule.model_validate(rule)
                for rule in self.repo.get_availability(self.db, doctor.id)
            ],
            consultation_types=[
                ConsultationTypeInfo.model_validate(ct)
                for ct in self.repo.list_consultation_types(self.db, doctor.id)
            ],
            rules=BookingRules.model_validate(stored_rules) if stored_rules else BookingRules(),
        )

    def consultation_type(
        self, schedule: ScheduleConfig, consultation_type_id: int
    ) -> ConsultationTypeInfo:
        consultation_type = schedule.consultation_type(consultation_type_id)
        if consultation_type is None:
            # Not one of this doctor's types: unknown, or owned by someone else
            if self.repo.get_consultation_type(self.db, consultation_type_id) is None:
                raise ConsultationTypeNotFound(
                    f"Consultation type {consultation_type_id} not found"
                )
            raise ConsultationTypeInactive("Consultation type not available for this doctor")
        if not consultation_type.is_active:
            raise ConsultationTypeInactive(f"{consultation_type.name} is not currently offered")
        return consultation_type

    def resolve(
        self,
        doctor_id: int,
        target_date: date,
        consultation_type_id: Optional[int] = None,
        schedule: Optional[ScheduleConfig] = None,
    ) -> list[TimeWindow]:
        if schedule is None:
            schedule = self.load_schedule(doctor_id)
        if consultation_type_id is not None:
            self.consultation_type(schedule, consultation_type_id)
        blocked = self.repo.get_blocked_slots(self.db, schedule.doctor_id, target_date)
        return resolve_windows(schedule.availability, target_date, blocked)
