"""Scheduling router - booking surface and appointment lifecycle endpoints"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...config import CLINIC_TIMEZONE, DEFAULT_AVAILABLE_DATE_RANGE
from ...database import get_db
from ...models import Appointment
from ...permissions import (
    ActorContext,
    Permission,
    ensure_can_modify,
    ensure_owns_phone,
    get_actor,
    require_permission,
    strip_financials,
)
from .lifecycle import AppointmentLifecycleManager
from .repository import SchedulingRepository
from .schemas import (
    AppointmentResponse,
    AppointmentStats,
    AppointmentStatus,
    AvailableDatesResponse,
    BookingRequest,
    CancelRequest,
    NextSlotResponse,
    PatientSummary,
    PaymentConfirmation,
    RescheduleRequest,
    SlotListResponse,
    SlotStats,
    StatusUpdateRequest,
)
from .service import SchedulingService
from .time_calculator import local_now, parse_date

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduling", tags=["Scheduling"])


def get_now() -> datetime:
    """Current clinic wall-clock time; overridden in tests"""
    return local_now(CLINIC_TIMEZONE)


def get_scheduling_service(db: Session = Depends(get_db)) -> SchedulingService:
    """Dependency injection for SchedulingService"""
    return SchedulingService(db)


def get_lifecycle_manager(db: Session = Depends(get_db)) -> AppointmentLifecycleManager:
    """Dependency injection for AppointmentLifecycleManager"""
    return AppointmentLifecycleManager(db)


def to_response(appointment: Appointment, actor: ActorContext) -> AppointmentResponse:
    payload = {
        "id": appointment.id,
        "bookingRef": appointment.booking_ref,
        "doctorId": appointment.doctor_id,
        "consultationTypeId": appointment.consultation_type_id,
        "date": appointment.date,
        "startTime": appointment.start_time,
        "endTime": appointment.end_time,
        "duration": appointment.duration,
        "fee": appointment.fee,
        "status": appointment.status,
        "paymentStatus": appointment.payment_status,
        "rescheduleCount": appointment.reschedule_count,
        "originalDate": appointment.original_date,
        "originalStartTime": appointment.original_start_time,
        "reasonForVisit": appointment.reason_for_visit,
        "cancellationReason": appointment.cancellation_reason,
        "patient": PatientSummary(
            name=appointment.patient.name,
            phone=appointment.patient.phone,
            email=appointment.patient.email,
        ),
        "createdAt": appointment.created_at,
    }
    return AppointmentResponse(**strip_financials(payload, actor))


# ============================================================================
# AVAILABILITY (public, read-only)
# ============================================================================


@router.get("/doctors/{doctor_id}/dates", response_model=AvailableDatesResponse)
async def list_available_dates(
    doctor_id: int,
    rangeDays: int = Query(DEFAULT_AVAILABLE_DATE_RANGE, ge=1),
    consultationTypeId: Optional[int] = Query(None),
    now: datetime = Depends(get_now),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Dates with at least one open slot"""
    return service.list_available_dates(doctor_id, now, rangeDays, consultationTypeId)


@router.get("/doctors/{doctor_id}/slots", response_model=SlotListResponse)
async def list_slots(
    doctor_id: int,
    date: str = Query(..., description="YYYY-MM-DD"),
    consultationTypeId: int = Query(...),
    now: datetime = Depends(get_now),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Open slots for a date, grouped into morning/afternoon/evening"""
    return service.list_slots(doctor_id, date, consultationTypeId, now)


@router.get("/doctors/{doctor_id}/next-slot", response_model=NextSlotResponse)
async def next_available_slot(
    doctor_id: int,
    consultationTypeId: int = Query(...),
    rangeDays: int = Query(DEFAULT_AVAILABLE_DATE_RANGE, ge=1),
    now: datetime = Depends(get_now),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return service.next_available_slot(doctor_id, consultationTypeId, now, rangeDays)


# ============================================================================
# STAFF VIEWS
# ============================================================================


@router.get("/doctors/{doctor_id}/stats", response_model=SlotStats)
async def slot_stats(
    doctor_id: int,
    date: str = Query(..., description="YYYY-MM-DD"),
    consultationTypeId: int = Query(...),
    now: datetime = Depends(get_now),
    actor: ActorContext = Depends(get_actor),
    service: SchedulingService = Depends(get_scheduling_service),
):
    require_permission(actor, Permission.SCHEDULE_VIEW)
    return service.slot_stats(doctor_id, date, consultationTypeId, now)


@router.get("/doctors/{doctor_id}/appointments", response_model=list[AppointmentResponse])
async def list_doctor_appointments(
    doctor_id: int,
    date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    status: Optional[AppointmentStatus] = Query(None),
    actor: ActorContext = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Appointments for a doctor, optionally filtered by date and status"""
    require_permission(actor, Permission.APPOINTMENT_VIEW)
    day = parse_date(date) if date else None
    appointments = SchedulingRepository.search_appointments(db, doctor_id, day, status)
    return [to_response(a, actor) for a in appointments]


@router.get("/doctors/{doctor_id}/appointment-stats", response_model=AppointmentStats)
async def appointment_stats(
    doctor_id: int,
    now: datetime = Depends(get_now),
    actor: ActorContext = Depends(get_actor),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Dashboard counters; revenue only for actors with financial access"""
    require_permission(actor, Permission.APPOINTMENT_VIEW)
    stats = service.appointment_stats(doctor_id, now.date())
    return AppointmentStats(
        **strip_financials(stats.model_dump(), actor, fields=("totalRevenue",))
    )


@router.get("/patients/appointments", response_model=list[AppointmentResponse])
async def list_patient_appointments(
    phone: str = Query(..., description="Patient phone, any format"),
    doctorId: Optional[int] = Query(None),
    now: datetime = Depends(get_now),
    actor: ActorContext = Depends(get_actor),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Upcoming pending and confirmed appointments for one patient"""
    ensure_owns_phone(actor, phone, Permission.APPOINTMENT_VIEW)
    appointments = service.patient_appointments(phone, now.date(), doctorId)
    return [to_response(a, actor) for a in appointments]


# ============================================================================
# APPOINTMENT LIFECYCLE
# ============================================================================


@router.post("/appointments", response_model=AppointmentResponse, status_code=201)
def book_appointment(
    data: BookingRequest,
    now: datetime = Depends(get_now),
    actor: ActorContext = Depends(get_actor),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    """Book a slot. The chosen time is re-validated server-side."""
    if actor.is_staff:
        require_permission(actor, Permission.APPOINTMENT_CREATE)
    appointment = manager.book(
        doctor_id=data.doctorId,
        consultation_type_id=data.consultationTypeId,
        target_date=data.date,
        time=data.time,
        patient=data.patient,
        now=now,
        reason_for_visit=data.reasonForVisit,
    )
    return to_response(appointment, actor)


@router.get("/appointments/ref/{booking_ref}", response_model=AppointmentResponse)
def get_appointment_by_ref(
    booking_ref: str,
    actor: ActorContext = Depends(get_actor),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    appointment = manager.get_by_booking_ref(booking_ref)
    ensure_can_modify(actor, appointment, Permission.APPOINTMENT_VIEW)
    return to_response(appointment, actor)


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelRequest,
    now: datetime = Depends(get_now),
    actor: ActorContext = Depends(get_actor),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    appointment = manager.get_appointment(appointment_id)
    ensure_can_modify(actor, appointment, Permission.APPOINTMENT_CANCEL)
    appointment = manager.cancel(appointment_id, now, actor=actor.label, reason=data.reason)
    return to_response(appointment, actor)


@router.post("/appointments/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    now: datetime = Depends(get_now),
    actor: ActorContext = Depends(get_actor),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    appointment = manager.get_appointment(appointment_id)
    ensure_can_modify(actor, appointment, Permission.APPOINTMENT_RESCHEDULE)
    appointment = manager.reschedule(appointment_id, data.newDate, data.newTime, now)
    return to_response(appointment, actor)


@router.patch("/appointments/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: StatusUpdateRequest,
    now: datetime = Depends(get_now),
    actor: ActorContext = Depends(get_actor),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    """Check-in, start, complete or mark no-show"""
    require_permission(actor, Permission.APPOINTMENT_UPDATE)
    appointment = manager.transition(appointment_id, data.status, now)
    return to_response(appointment, actor)


@router.post("/appointments/{appointment_id}/payment", response_model=AppointmentResponse)
def confirm_payment(
    appointment_id: int,
    data: PaymentConfirmation,
    now: datetime = Depends(get_now),
    actor: ActorContext = Depends(get_actor),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    """Payment captured elsewhere; record it and confirm a pending reservation"""
    require_permission(actor, Permission.PAYMENT_MARK_DONE)
    appointment = manager.mark_paid(appointment_id, now, data.paymentReference)
    return to_response(appointment, actor)
