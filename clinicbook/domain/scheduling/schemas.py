"""Scheduling domain schemas - enums, value objects and API models"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...shared.validators import validate_email, validate_phone
from .errors import ConfigurationError


class DayOfWeek(str, Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"


class ConsultationKind(str, Enum):
    IN_PERSON = "IN_PERSON"
    VIDEO_CALL = "VIDEO_CALL"
    PHONE_CALL = "PHONE_CALL"


class AppointmentStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class BookingAction(str, Enum):
    BOOK = "BOOK"
    CANCEL = "CANCEL"
    RESCHEDULE = "RESCHEDULE"


# Rows in these statuses no longer occupy their slot
RELEASED_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.RESCHEDULED})

TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    }
)


# ============================================================================
# VALUE OBJECTS
# ============================================================================


class TimeWindow(BaseModel):
    """A concrete availability window [start, end) on one date."""

    model_config = ConfigDict(frozen=True)

    start: str
    end: str
    start_minutes: int
    end_minutes: int


class BusyInterval(BaseModel):
    """An occupied interval in minutes since midnight."""

    model_config = ConfigDict(frozen=True)

    start_minutes: int
    end_minutes: int
    appointment_id: Optional[int] = None


class TimeSlot(BaseModel):
    time: str
    displayTime: str
    endTime: str
    displayEndTime: str
    duration: int
    available: bool = True
    reason: Optional[str] = None


class SlotGroups(BaseModel):
    morning: list[TimeSlot] = Field(default_factory=list)
    afternoon: list[TimeSlot] = Field(default_factory=list)
    evening: list[TimeSlot] = Field(default_factory=list)


class BookingRules(BaseModel):
    """Effective booking policy for a doctor (defaults apply when none are stored)."""

    model_config = ConfigDict(from_attributes=True)

    min_advance_booking: int = 60
    max_advance_booking: int = 43200
    allow_cancellation: bool = True
    cancellation_window: int = 240
    allow_rescheduling: bool = True
    rescheduling_window: int = 240
    max_reschedules: int = 2
    max_bookings_per_day: Optional[int] = None
    max_bookings_per_patient: Optional[int] = None
    require_payment: bool = False
    pending_payment_ttl: int = 30
    send_reminder: bool = True
    reminder_hours: int = 24

    def ensure_consistent(self) -> "BookingRules":
        if self.min_advance_booking < 0 or self.max_advance_booking < 0:
            raise ConfigurationError("Advance booking limits cannot be negative")
        if self.max_advance_booking < self.min_advance_booking:
            raise ConfigurationError(
                f"maxAdvanceBooking ({self.max_advance_booking} min) is shorter than "
                f"minAdvanceBooking ({self.min_advance_booking} min)"
            )
        if self.max_reschedules < 0:
            raise ConfigurationError("maxReschedules cannot be negative")
        return self


class AvailabilityRule(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    day_of_week: DayOfWeek
    start_time: str
    end_time: str
    is_active: bool = True


class ConsultationTypeInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    name: str
    kind: ConsultationKind
    fee: float
    duration: int
    is_active: bool = True


class ScheduleConfig(BaseModel):
    """Snapshot of everything slot generation needs from the settings store."""

    doctor_id: int
    default_duration: int
    buffer_time: int
    availability: list[AvailabilityRule] = Field(default_factory=list)
    consultation_types: list[ConsultationTypeInfo] = Field(default_factory=list)
    rules: BookingRules = Field(default_factory=BookingRules)

    def consultation_type(self, consultation_type_id: int) -> Optional[ConsultationTypeInfo]:
        for consultation_type in self.consultation_types:
            if consultation_type.id == consultation_type_id:
                return consultation_type
        return None


# ============================================================================
# REQUESTS
# ============================================================================


class PatientInfo(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    phone: str
    email: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return validate_phone(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if v:
            return validate_email(v)
        return v


class BookingRequest(BaseModel):
    """Schema for booking an appointment. The chosen slot is advisory only."""

    doctorId: int
    consultationTypeId: int
    date: str  # YYYY-MM-DD
    time: str  # HH:MM
    patient: PatientInfo
    reasonForVisit: Optional[str] = Field(default=None, max_length=500)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RescheduleRequest(BaseModel):
    newDate: str  # YYYY-MM-DD
    newTime: str  # HH:MM


class StatusUpdateRequest(BaseModel):
    status: AppointmentStatus


class PaymentConfirmation(BaseModel):
    paymentReference: Optional[str] = None


# ============================================================================
# RESPONSES
# ============================================================================


class PatientSummary(BaseModel):
    name: str
    phone: str
    email: Optional[str] = None


class AppointmentResponse(BaseModel):
    id: int
    bookingRef: str
    doctorId: int
    consultationTypeId: int
    date: date
    startTime: str
    endTime: str
    duration: int
    fee: Optional[float] = None  # omitted for actors without financial access
    status: AppointmentStatus
    paymentStatus: PaymentStatus
    rescheduleCount: int
    originalDate: Optional[date] = None
    originalStartTime: Optional[str] = None
    reasonForVisit: Optional[str] = None
    cancellationReason: Optional[str] = None
    patient: PatientSummary
    createdAt: datetime


class SlotListResponse(BaseModel):
    date: date
    displayDate: str
    slots: list[TimeSlot]
    grouped: SlotGroups
    summary: dict


class AvailableDate(BaseModel):
    date: date
    dayOfWeek: DayOfWeek
    displayDate: str


class AvailableDatesResponse(BaseModel):
    dates: list[AvailableDate]
    totalDays: int


class NextSlotResponse(BaseModel):
    date: Optional[str] = None  # YYYY-MM-DD
    slot: Optional[TimeSlot] = None
    message: Optional[str] = None


class SlotStats(BaseModel):
    totalSlots: int
    availableSlots: int
    bookedSlots: int
    utilization: int


class AppointmentStats(BaseModel):
    """Dashboard counters for one doctor"""

    totalAppointments: int
    todayAppointments: int  # PENDING or CONFIRMED today
    completedToday: int
    pendingCount: int
    cancelledCount: int
    byStatus: dict[str, int]
    totalRevenue: Optional[float] = None  # completed fees; omitted without financial access
