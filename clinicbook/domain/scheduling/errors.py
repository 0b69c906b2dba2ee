"""Scheduling error taxonomy.

Every error carries an HTTP status and a machine-readable code; the application
exception handler in ``clinicbook.main`` turns them into JSON responses.

- ``ConfigurationError``: the clinic's own rule data is invalid. Reported, never fixed up.
- ``ValidationError``: the request breaks a booking policy. The user can pick another slot/action.
- ``ConflictError``: a concurrent booking won the slot. Fresh alternatives are attached.
- ``NotFoundError``: unknown doctor, appointment or consultation type.
"""

from typing import Any, Optional


class SchedulingError(Exception):
    status_code = 400
    code = "scheduling_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.extra}


# ----------------------------------------------------------------------------
# Configuration
# ----------------------------------------------------------------------------


class ConfigurationError(SchedulingError):
    status_code = 422
    code = "configuration_error"


# ----------------------------------------------------------------------------
# Validation (user-recoverable)
# ----------------------------------------------------------------------------


class ValidationError(SchedulingError):
    status_code = 400
    code = "validation_error"


class InvalidTimeFormat(ValidationError):
    code = "invalid_time_format"


class ConsultationTypeInactive(ValidationError):
    code = "consultation_type_inactive"


class OutsideBookingWindow(ValidationError):
    code = "outside_booking_window"


class SlotNoLongerAvailable(ValidationError):
    code = "slot_no_longer_available"

    def __init__(self, message: str = "This time slot is no longer available", alternatives=None):
        super().__init__(message, alternatives=alternatives or [])


class DailyBookingLimitReached(ValidationError):
    code = "daily_booking_limit_reached"


class PatientBookingLimitReached(ValidationError):
    code = "patient_booking_limit_reached"


class CancellationNotAllowed(ValidationError):
    code = "cancellation_not_allowed"


class CancellationWindowPassed(ValidationError):
    code = "cancellation_window_passed"


class AppointmentAlreadyCancelled(ValidationError):
    code = "appointment_already_cancelled"


class ReschedulingNotAllowed(ValidationError):
    code = "rescheduling_not_allowed"


class RescheduleWindowPassed(ValidationError):
    code = "reschedule_window_passed"


class MaxReschedulesExceeded(ValidationError):
    code = "max_reschedules_exceeded"


class InvalidStatusTransition(ValidationError):
    code = "invalid_status_transition"


class ActorNotPermitted(ValidationError):
    status_code = 403
    code = "actor_not_permitted"


# ----------------------------------------------------------------------------
# Conflict
# ----------------------------------------------------------------------------


class ConflictError(SchedulingError):
    status_code = 409
    code = "conflict"


class SlotConflict(ConflictError):
    code = "slot_conflict"

    def __init__(
        self,
        message: str = "This time slot has just been booked. Please select another time.",
        alternatives: Optional[list] = None,
    ):
        super().__init__(message, alternatives=alternatives or [])


# ----------------------------------------------------------------------------
# Not found
# ----------------------------------------------------------------------------


class NotFoundError(SchedulingError):
    status_code = 404
    code = "not_found"


class DoctorNotFound(NotFoundError):
    code = "doctor_not_found"


class ConsultationTypeNotFound(NotFoundError):
    code = "consultation_type_not_found"


class AppointmentNotFound(NotFoundError):
    code = "appointment_not_found"
