"""Practice router - FastAPI endpoints for doctor settings"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...models import AvailabilitySlot, BlockedSlot, ConsultationType, DoctorProfile
from ...permissions import (
    ActorContext,
    Permission,
    get_actor,
    require_permission,
    strip_financials,
)
from ..scheduling.schemas import BookingRules
from .schemas import (
    AvailabilityUpdate,
    AvailabilityWindow,
    BlockedSlotCreate,
    BlockedSlotResponse,
    ConsultationTypeCreate,
    ConsultationTypeResponse,
    ConsultationTypeUpdate,
    DoctorCreate,
    DoctorPublicProfile,
    DoctorResponse,
    DoctorUpdate,
    RulesResponse,
    RulesUpdate,
)
from .service import PracticeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/practice", tags=["Practice"])


def get_practice_service(db: Session = Depends(get_db)) -> PracticeService:
    """Dependency injection for PracticeService"""
    return PracticeService(db)


def doctor_response(doctor: DoctorProfile) -> DoctorResponse:
    return DoctorResponse(
        id=doctor.id,
        name=doctor.name,
        slug=doctor.slug,
        specialization=doctor.specialization,
        defaultDuration=doctor.default_duration,
        bufferTime=doctor.buffer_time,
        isActive=doctor.is_active,
    )


def availability_response(slots: list[AvailabilitySlot]) -> list[AvailabilityWindow]:
    return [
        AvailabilityWindow(
            dayOfWeek=s.day_of_week, startTime=s.start_time, endTime=s.end_time, isActive=s.is_active
        )
        for s in slots
    ]


def consultation_type_response(
    consultation_type: ConsultationType, actor: ActorContext
) -> ConsultationTypeResponse:
    payload = {
        "id": consultation_type.id,
        "doctorId": consultation_type.doctor_id,
        "name": consultation_type.name,
        "kind": consultation_type.kind,
        "fee": consultation_type.fee,
        "duration": consultation_type.duration,
        "isActive": consultation_type.is_active,
    }
    return ConsultationTypeResponse(**strip_financials(payload, actor))


def rules_response(doctor_id: int, rules: BookingRules) -> RulesResponse:
    return RulesResponse(
        doctorId=doctor_id,
        minAdvanceBooking=rules.min_advance_booking,
        maxAdvanceBooking=rules.max_advance_booking,
        allowCancellation=rules.allow_cancellation,
        cancellationWindow=rules.cancellation_window,
        allowRescheduling=rules.allow_rescheduling,
        reschedulingWindow=rules.rescheduling_window,
        maxReschedules=rules.max_reschedules,
        maxBookingsPerDay=rules.max_bookings_per_day,
        maxBookingsPerPatient=rules.max_bookings_per_patient,
        requirePayment=rules.require_payment,
        pendingPaymentTtl=rules.pending_payment_ttl,
        sendReminder=rules.send_reminder,
        reminderHours=rules.reminder_hours,
    )


def blocked_response(blocked: BlockedSlot) -> BlockedSlotResponse:
    return BlockedSlotResponse(
        id=blocked.id,
        doctorId=blocked.doctor_id,
        date=blocked.date,
        startTime=blocked.start_time,
        endTime=blocked.end_time,
        reason=blocked.reason,
    )


# ============================================================================
# DOCTOR PROFILE
# ============================================================================


@router.post("/doctors", response_model=DoctorResponse, status_code=201)
def create_doctor(
    data: DoctorCreate,
    actor: ActorContext = Depends(get_actor),
    service: PracticeService = Depends(get_practice_service),
):
    require_permission(actor, Permission.SCHEDULE_MANAGE)
    return doctor_response(service.create_doctor(data))


@router.get("/doctors/slug/{slug}", response_model=DoctorPublicProfile)
async def get_public_profile(
    slug: str,
    actor: ActorContext = Depends(get_actor),
    service: PracticeService = Depends(get_practice_service),
):
    """Public booking page data: active consultation types and weekly hours"""
    doctor, consultation_types, availability = service.get_public_profile(slug)
    return DoctorPublicProfile(
        doctor=doctor_response(doctor),
        consultationTypes=[consultation_type_response(ct, actor) for ct in consultation_types],
        availability=availability_response(availability),
    )


@router.get("/doctors/{doctor_id}", response_model=DoctorResponse)
async def get_doctor(doctor_id: int, service: PracticeService = Depends(get_practice_service)):
    return doctor_response(service.get_doctor(doctor_id))


@router.patch("/doctors/{doctor_id}", response_model=DoctorResponse)
def update_doctor(
    doctor_id: int,
    data: DoctorUpdate,
    actor: ActorContext = Depends(get_actor),
    service: PracticeService = Depends(get_practice_service),
):
    require_permission(actor, Permission.SCHEDULE_MANAGE)
    return doctor_response(service.update_doctor(doctor_id, data))


# ============================================================================
# WEEKLY AVAILABILITY
# ============================================================================


@router.get("/doctors/{doctor_id}/availability", response_model=list[AvailabilityWindow])
async def get_availability(
    doctor_id: int, service: PracticeService = Depends(get_practice_service)
):
    return availability_response(service.get_availability(doctor_id))


@router.put("/doctors/{doctor_id}/availability", response_model=list[AvailabilityWindow])
def replace_availability(
    doctor_id: int,
    data: AvailabilityUpdate,
    actor: ActorContext = Depends(get_actor),
    service: PracticeService = Depends(get_practice_service),
):
    """Replace the whole weekly schedule"""
    require_permission(actor, Permission.SCHEDULE_MANAGE)
    return availability_response(service.replace_availability(doctor_id, data))


# ============================================================================
# CONSULTATION TYPES
# ============================================================================


@router.get(
    "/doctors/{doctor_id}/consultation-types", response_model=list[ConsultationTypeResponse]
)
async def get_consultation_types(
    doctor_id: int,
    actor: ActorContext = Depends(get_actor),
    service: PracticeService = Depends(get_practice_service),
):
    return [consultation_type_response(ct, actor) for ct in service.get_consultation_types(doctor_id)]


@router.post(
    "/doctors/{doctor_id}/consultation-types",
    response_model=ConsultationTypeResponse,
    status_code=201,
)
def create_consultation_type(
    doctor_id: int,
    data: ConsultationTypeCreate,
    actor: ActorContext = Depends(get_actor),
    service: PracticeService = Depends(get_practice_service),
):
    require_permission(actor, Permission.CONSULTATION_MANAGE)
    return consultation_type_response(service.create_consultation_type(doctor_id, data), actor)


@router.patch("/consultation-types/{consultation_type_id}", response_model=ConsultationTypeResponse)
def update_consultation_type(
    consultation_type_id: int,
    data: ConsultationTypeUpdate,
    actor: ActorContext = Depends(get_actor),
    service: PracticeService = Depends(get_practice_service),
):
    require_permission(actor, Permission.CONSULTATION_MANAGE)
    return consultation_type_response(
        service.update_consultation_type(consultation_type_id, data), actor
    )


# ============================================================================
# BOOKING RULES
# ============================================================================


@router.get("/doctors/{doctor_id}/rules", response_model=RulesResponse)
async def get_rules(doctor_id: int, service: PracticeService = Depends(get_practice_service)):
    return rules_response(doctor_id, service.get_rules(doctor_id))


@router.put("/doctors/{doctor_id}/rules", response_model=RulesResponse)
def set_rules(
    doctor_id: int,
    data: RulesUpdate,
    actor: ActorContext = Depends(get_actor),
    service: PracticeService = Depends(get_practice_service),
):
    require_permission(actor, Permission.SCHEDULE_MANAGE)
    return rules_response(doctor_id, service.set_rules(doctor_id, data))


# ============================================================================
# BLOCKED SLOTS
# ============================================================================


@router.get("/doctors/{doctor_id}/blocked-slots", response_model=list[BlockedSlotResponse])
async def get_blocked_slots(
    doctor_id: int,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    service: PracticeService = Depends(get_practice_service),
):
    return [blocked_response(b) for b in service.get_blocked_slots(doctor_id, start, end)]


@router.post(
    "/doctors/{doctor_id}/blocked-slots", response_model=BlockedSlotResponse, status_code=201
)
def add_blocked_slot(
    doctor_id: int,
    data: BlockedSlotCreate,
    actor: ActorContext = Depends(get_actor),
    service: PracticeService = Depends(get_practice_service),
):
    require_permission(actor, Permission.SCHEDULE_MANAGE)
    return blocked_response(service.add_blocked_slot(doctor_id, data))


@router.delete("/blocked-slots/{blocked_slot_id}", status_code=204)
def remove_blocked_slot(
    blocked_slot_id: int,
    actor: ActorContext = Depends(get_actor),
    service: PracticeService = Depends(get_practice_service),
):
    require_permission(actor, Permission.SCHEDULE_MANAGE)
    service.remove_blocked_slot(blocked_slot_id)
