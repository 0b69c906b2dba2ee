"""Booking Rule Engine - stateless policy checks evaluated against an injected "now"."""

from datetime import datetime, timedelta
from typing import Optional

from .errors import (
    AppointmentAlreadyCancelled,
    CancellationNotAllowed,
    CancellationWindowPassed,
    InvalidStatusTransition,
    MaxReschedulesExceeded,
    OutsideBookingWindow,
    RescheduleWindowPassed,
    ReschedulingNotAllowed,
)
from .schemas import AppointmentStatus, BookingAction, BookingRules
from .time_calculator import combine

NOT_RESCHEDULABLE = frozenset(
    {
        AppointmentStatus.CHECKED_IN,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    }
)
NOT_CANCELLABLE = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    }
)


def appointment_start(appointment) -> datetime:
    return combine(appointment.date, appointment.start_time)


class BookingRuleEngine:
    """Validates BOOK / CANCEL / RESCHEDULE intents. Raises on the first violated rule."""

    def __init__(self, rules: BookingRules):
        self.rules = rules.ensure_consistent()

    def evaluate(
        self,
        action: BookingAction,
        now: datetime,
        appointment=None,
        target_start: Optional[datetime] = None,
    ) -> None:
        if action == BookingAction.BOOK:
            self.check_book(target_start, now)
        elif action == BookingAction.CANCEL:
            self.check_cancel(appointment, now)
        elif action == BookingAction.RESCHEDULE:
            self.check_reschedule(appointment, now)
            if target_start is not None:
                self.check_book(target_start, now)

    def check_book(self, target_start: datetime, now: datetime) -> None:
        earliest = now + timedelta(minutes=self.rules.min_advance_booking)
        latest = now + timedelta(minutes=self.rules.max_advance_booking)
        if target_start < earliest:
            raise OutsideBookingWindow(
                f"Appointments must be booked at least {self.rules.min_advance_booking} minutes in advance",
                earliest=earliest.isoformat(),
            )
        if target_start > latest:
            raise OutsideBookingWindow(
                f"Appointments can be booked at most {self.rules.max_advance_booking} minutes in advance",
                latest=latest.isoformat(),
            )

    def check_cancel(self, appointment, now: datetime) -> None:
        status = AppointmentStatus(appointment.status)
        if status == AppointmentStatus.CANCELLED:
            raise AppointmentAlreadyCancelled("This appointment has already been cancelled")
        if status in NOT_CANCELLABLE:
            raise InvalidStatusTransition(f"Cannot cancel an appointment that is {status.value}")
        if not self.rules.allow_cancellation:
            raise CancellationNotAllowed("Cancellation is not allowed")

        deadline = appointment_start(appointment) - timedelta(minutes=self.rules.cancellation_window)
        if now > deadline:
            raise CancellationWindowPassed(
                f"Cancellation must be done at least {self.rules.cancellation_window} minutes before the appointment"
            )

    def check_reschedule(self, appointment, now: datetime) -> None:
        status = AppointmentStatus(appointment.status)
        if status in NOT_RESCHEDULABLE:
            raise InvalidStatusTransition(f"Cannot reschedule an appointment that is {status.value}")
        if not self.rules.allow_rescheduling:
            raise ReschedulingNotAllowed("Rescheduling is not allowed")
        # Count cap applies regardless of timing
        if appointment.reschedule_count >= self.rules.max_reschedules:
            raise MaxReschedulesExceeded(
                f"Maximum reschedule limit ({self.rules.max_reschedules}) reached"
            )

        deadline = appointment_start(appointment) - timedelta(minutes=self.rules.rescheduling_window)
        if now > deadline:
            raise RescheduleWindowPassed(
                f"Rescheduling must be done at least {self.rules.rescheduling_window} minutes before the appointment"
            )
