"""Practice repository - Database operations for clinic settings"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ...models import (
    AppointmentRules,
    AvailabilitySlot,
    BlockedSlot,
    ConsultationType,
    DoctorProfile,
)


class PracticeRepository:
    """Repository for doctor profile and schedule settings"""

    @staticmethod
    def get_doctor(db: Session, doctor_id: int) -> Optional[DoctorProfile]:
        return db.query(DoctorProfile).filter(DoctorProfile.id == doctor_id).first()

    @staticmethod
    def get_doctor_by_slug(db: Session, slug: str) -> Optional[DoctorProfile]:
        return db.query(DoctorProfile).filter(DoctorProfile.slug == slug).first()

    @staticmethod
    def slug_exists(db: Session, slug: str) -> bool:
        return db.query(DoctorProfile.id).filter(DoctorProfile.slug == slug).first() is not None

    @staticmethod
    def create_doctor(db: Session, **doctor_data) -> DoctorProfile:
        doctor = DoctorProfile(**doctor_data)
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor

    @staticmethod
    def update(db: Session, record, **updates):
        """Apply non-None updates to any settings row"""
        for key, value in updates.items():
            if value is not None and hasattr(record, key):
                setattr(record, key, value)
        db.commit()
        db.refresh(record)
        return record

    # Weekly availability
    @staticmethod
    def get_availability(db: Session, doctor_id: int) -> list[AvailabilitySlot]:
        return (
            db.query(AvailabilitySlot)
            .filter(AvailabilitySlot.doctor_id == doctor_id)
            .order_by(AvailabilitySlot.day_of_week, AvailabilitySlot.start_time)
            .all()
        )

    @staticmethod
    def replace_availability(
        db: Session, doctor_id: int, windows: list[dict]
    ) -> list[AvailabilitySlot]:
        db.query(AvailabilitySlot).filter(AvailabilitySlot.doctor_id == doctor_id).delete()
        for window in windows:
            db.add(AvailabilitySlot(doctor_id=doctor_id, **window))
        db.commit()
        return PracticeRepository.get_availability(db, doctor_id)

    # Consultation types
    @staticmethod
    def get_consultation_types(db: Session, doctor_id: int) -> list[ConsultationType]:
        return (
            db.query(ConsultationType)
            .filter(ConsultationType.doctor_id == doctor_id)
            .order_by(ConsultationType.id)
            .all()
        )

    @staticmethod
    def get_consultation_type(db: Session, consultation_type_id: int) -> Optional[ConsultationType]:
        return db.query(ConsultationType).filter(ConsultationType.id == consultation_type_id).first()

    @staticmethod
    def create_consultation_type(db: Session, doctor_id: int, **data) -> ConsultationType:
        consultation_type = ConsultationType(doctor_id=doctor_id, **data)
        db.add(consultation_type)
        db.commit()
        db.refresh(consultation_type)
        return consultation_type

    # Rules
    @staticmethod
    def get_rules(db: Session, doctor_id: int) -> Optional[AppointmentRules]:
        return db.query(AppointmentRules).filter(AppointmentRules.doctor_id == doctor_id).first()

    @staticmethod
    def save_rules(db: Session, doctor_id: int, **rules_data) -> AppointmentRules:
        """Create or fully overwrite the doctor's rules row"""
        rules = PracticeRepository.get_rules(db, doctor_id)
        if rules is None:
            rules = AppointmentRules(doctor_id=doctor_id)
            db.add(rules)
        for key, value in rules_data.items():
            setattr(rules, key, value)
        db.commit()
        db.refresh(rules)
        return rules

    # Blocked slots
    @staticmethod
    def get_blocked_slots(
        db: Session, doctor_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[BlockedSlot]:
        query = db.query(BlockedSlot).filter(BlockedSlot.doctor_id == doctor_id)
        if start is not None:
            query = query.filter(BlockedSlot.date >= start)
        if end is not None:
            query = query.filter(BlockedSlot.date <= end)
        return query.order_by(BlockedSlot.date, BlockedSlot.start_time).all()

    @staticmethod
    def get_blocked_slot(db: Session, blocked_slot_id: int) -> Optional[BlockedSlot]:
        return db.query(BlockedSlot).filter(BlockedSlot.id == blocked_slot_id).first()

    @staticmethod
    def create_blocked_slot(db: Session, doctor_id: int, **data) -> BlockedSlot:
        blocked = BlockedSlot(doctor_id=doctor_id, **data)
        db.add(blocked)
        db.commit()
        db.refresh(blocked)
        return blocked

    @staticmethod
    def delete_blocked_slot(db: Session, blocked: BlockedSlot) -> None:
        db.delete(blocked)
        db.commit()
