"""Practice domain schemas - doctor profile, weekly availability, rules, blocks"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_slug
from ..scheduling.schemas import ConsultationKind, DayOfWeek


class DoctorCreate(BaseModel):
    """Schema for creating a doctor profile"""

    name: str = Field(min_length=2, max_length=255)
    slug: str
    specialization: Optional[str] = None
    defaultDuration: int = Field(default=15, gt=0)
    bufferTime: int = Field(default=5, ge=0)

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v):
        return validate_slug(v)


class DoctorUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    specialization: Optional[str] = None
    defaultDuration: Optional[int] = Field(default=None, gt=0)
    bufferTime: Optional[int] = Field(default=None, ge=0)
    isActive: Optional[bool] = None


class DoctorResponse(BaseModel):
    id: int
    name: str
    slug: str
    specialization: Optional[str] = None
    defaultDuration: int
    bufferTime: int
    isActive: bool


class AvailabilityWindow(BaseModel):
    dayOfWeek: DayOfWeek
    startTime: str  # HH:MM
    endTime: str  # HH:MM
    isActive: bool = True


class AvailabilityUpdate(BaseModel):
    """Replaces the doctor's whole weekly schedule"""

    windows: list[AvailabilityWindow]


class ConsultationTypeCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    kind: ConsultationKind = ConsultationKind.IN_PERSON
    fee: float = Field(default=0.0, ge=0)
    duration: int = Field(gt=0)
    isActive: bool = True


class ConsultationTypeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    kind: Optional[ConsultationKind] = None
    fee: Optional[float] = Field(default=None, ge=0)
    duration: Optional[int] = Field(default=None, gt=0)
    isActive: Optional[bool] = None


class ConsultationTypeResponse(BaseModel):
    id: int
    doctorId: int
    name: str
    kind: ConsultationKind
    fee: Optional[float] = None  # omitted for actors without financial access
    duration: int
    isActive: bool


class RulesUpdate(BaseModel):
    minAdvanceBooking: int = 60
    maxAdvanceBooking: int = 43200
    allowCancellation: bool = True
    cancellationWindow: int = Field(default=240, ge=0)
    allowRescheduling: bool = True
    reschedulingWindow: int = Field(default=240, ge=0)
    maxReschedules: int = 2
    maxBookingsPerDay: Optional[int] = Field(default=None, gt=0)
    maxBookingsPerPatient: Optional[int] = Field(default=None, gt=0)
    requirePayment: bool = False
    pendingPaymentTtl: int = Field(default=30, gt=0)
    sendReminder: bool = True
    reminderHours: int = Field(default=24, gt=0)


class RulesResponse(RulesUpdate):
    doctorId: int


class BlockedSlotCreate(BaseModel):
    """Leave both times empty to block the whole day"""

    date: date
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=255)


class BlockedSlotResponse(BaseModel):
    id: int
    doctorId: int
    date: date
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    reason: Optional[str] = None


class DoctorPublicProfile(BaseModel):
    """What the public booking page needs to render a doctor"""

    doctor: DoctorResponse
    consultationTypes: list[ConsultationTypeResponse]
    availability: list[AvailabilityWindow]
