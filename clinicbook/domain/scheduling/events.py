"""
Appointment events

Every successful lifecycle transition publishes an ``AppointmentEvent`` after the
database commit. Delivery (WhatsApp, SMS, email) belongs to subscribed handlers;
a failing handler is logged and never affects the appointment itself.
"""

import logging
from datetime import date, datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    BOOKED = "BOOKED"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"
    RESCHEDULED = "RESCHEDULED"
    EXPIRED = "EXPIRED"
    REMINDER = "REMINDER"


class AppointmentEvent(BaseModel):
    kind: EventKind
    appointment_id: int
    booking_ref: str
    doctor_id: int
    date: date
    start_time: str
    patient_name: str
    patient_phone: str
    patient_email: Optional[str] = None
    occurred_at: datetime
    previous_date: Optional[date] = None
    previous_start_time: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def from_appointment(cls, kind: EventKind, appointment, occurred_at: datetime, **extra):
        patient = appointment.patient
        return cls(
            kind=kind,
            appointment_id=appointment.id,
            booking_ref=appointment.booking_ref,
            doctor_id=appointment.doctor_id,
            date=appointment.date,
            start_time=appointment.start_time,
            patient_name=patient.name,
            patient_phone=patient.phone,
            patient_email=patient.email,
            occurred_at=occurred_at,
            **extra,
        )


EventHandler = Callable[[AppointmentEvent], None]


class NotificationDispatcher:
    """In-process fan-out of appointment events to registered handlers"""

    def __init__(self):
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> EventHandler:
        self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, event: AppointmentEvent) -> int:
        """
        Deliver an event to every handler.

        Returns:
            Number of handlers that completed without raising
        """
        delivered = 0
        for handler in list(self._handlers):
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"❌ Notification handler {getattr(handler, '__name__', handler)!r} failed "
                    f"for {event.kind.value} {event.booking_ref}: {e}"
                )
        return delivered


def log_event(event: AppointmentEvent) -> None:
    logger.info(
        f"📅 {event.kind.value} {event.booking_ref} - {event.patient_name} "
        f"on {event.date.isoformat()} at {event.start_time}"
    )


dispatcher = NotificationDispatcher()
dispatcher.subscribe(log_event)
