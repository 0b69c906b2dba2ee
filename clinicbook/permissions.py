"""
Role-based capability checks

Roles:
- ADMIN: everything, including fees and payment amounts
- MANAGER: appointments, patients and schedule settings. No financial data
- RECEPTION: booking, check-in, marking payments done. No financial data

Checks run at the API boundary; the scheduling core never sees roles.
"""

from enum import Enum
from typing import Optional

from fastapi import Header
from pydantic import BaseModel

from .domain.scheduling.errors import ActorNotPermitted
from .shared.validators import phones_match


class StaffRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    RECEPTION = "RECEPTION"


class Permission(str, Enum):
    APPOINTMENT_VIEW = "appointment:view"
    APPOINTMENT_CREATE = "appointment:create"
    APPOINTMENT_UPDATE = "appointment:update"
    APPOINTMENT_CANCEL = "appointment:cancel"
    APPOINTMENT_RESCHEDULE = "appointment:reschedule"
    SCHEDULE_VIEW = "schedule:view"
    SCHEDULE_MANAGE = "schedule:manage"
    PAYMENT_VIEW_AMOUNT = "payment:view_amount"
    PAYMENT_MARK_DONE = "payment:mark_done"
    CONSULTATION_VIEW_FEE = "consultation:view_fee"
    CONSULTATION_MANAGE = "consultation:manage"


_STAFF_COMMON = {
    Permission.APPOINTMENT_VIEW,
    Permission.APPOINTMENT_CREATE,
    Permission.APPOINTMENT_UPDATE,
    Permission.APPOINTMENT_CANCEL,
    Permission.APPOINTMENT_RESCHEDULE,
    Permission.SCHEDULE_VIEW,
    Permission.PAYMENT_MARK_DONE,
}

ROLE_PERMISSIONS: dict[StaffRole, frozenset[Permission]] = {
    StaffRole.ADMIN: frozenset(Permission),
    StaffRole.MANAGER: frozenset(_STAFF_COMMON | {Permission.SCHEDULE_MANAGE}),
    StaffRole.RECEPTION: frozenset(_STAFF_COMMON),
}


class ActorContext(BaseModel):
    """Who is acting: a staff member with a role, or a patient identified by phone"""

    kind: str  # "staff" | "patient"
    role: Optional[StaffRole] = None
    phone: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.kind == "staff" and self.role is not None

    @property
    def label(self) -> str:
        if self.is_staff:
            return f"staff:{self.role.value.lower()}"
        return "patient"


def get_actor(
    x_staff_role: Optional[str] = Header(None),
    x_patient_phone: Optional[str] = Header(None),
) -> ActorContext:
    """Actor identity as forwarded by the gateway. No header means an anonymous patient."""
    if x_staff_role:
        try:
            role = StaffRole(x_staff_role.strip().upper())
        except ValueError:
            raise ActorNotPermitted(f"Unknown staff role: {x_staff_role}") from None
        return ActorContext(kind="staff", role=role)
    return ActorContext(kind="patient", phone=x_patient_phone)


def has_permission(actor: ActorContext, permission: Permission) -> bool:
    if not actor.is_staff:
        return False
    return permission in ROLE_PERMISSIONS.get(actor.role, frozenset())


def require_permission(actor: ActorContext, permission: Permission) -> None:
    if not has_permission(actor, permission):
        raise ActorNotPermitted(f"This action requires the {permission.value} permission")


def can_view_financials(actor: ActorContext) -> bool:
    """Patients see the fee they pay; staff only with PAYMENT_VIEW_AMOUNT."""
    if not actor.is_staff:
        return True
    return has_permission(actor, Permission.PAYMENT_VIEW_AMOUNT)


def ensure_owns_phone(actor: ActorContext, phone: str, permission: Permission) -> None:
    """Staff need the permission; a patient may only act for their own phone."""
    if actor.is_staff:
        require_permission(actor, permission)
        return
    if not phones_match(actor.phone, phone):
        raise ActorNotPermitted("You can only access your own appointments")


def ensure_can_modify(actor: ActorContext, appointment, permission: Permission) -> None:
    ensure_owns_phone(actor, appointment.patient.phone, permission)


def strip_financials(payload: dict, actor: ActorContext, fields=("fee",)) -> dict:
    """Blank out money fields for actors without financial visibility"""
    if can_view_financials(actor):
        return payload
    return {**payload, **{field: None for field in fields if field in payload}}
