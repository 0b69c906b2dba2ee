"""Tests for the appointment lifecycle manager."""

import threading
from datetime import datetime, timedelta

import pytest

from clinicbook.domain.scheduling.errors import (
    AppointmentAlreadyCancelled,
    AppointmentNotFound,
    CancellationWindowPassed,
    DailyBookingLimitReached,
    InvalidStatusTransition,
    MaxReschedulesExceeded,
    OutsideBookingWindow,
    PatientBookingLimitReached,
    SlotConflict,
    SlotNoLongerAvailable,
)
from clinicbook.domain.scheduling.events import EventKind
from clinicbook.domain.scheduling.lifecycle import (
    BOOKING_REF_ALPHABET,
    AppointmentLifecycleManager,
    generate_booking_ref,
)
from clinicbook.domain.scheduling.repository import SchedulingRepository
from clinicbook.domain.scheduling.schemas import AppointmentStatus, PatientInfo
from clinicbook.models import Appointment, BlockedSlot, Patient

from .conftest import MONDAY, NOW, TUESDAY


def live_appointments(db, doctor_id):
    return (
        db.query(Appointment)
        .filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status.notin_(["CANCELLED", "RESCHEDULED"]),
        )
        .all()
    )


class TestBook:
    def test_book_confirms_when_payment_not_required(self, book, events):
        """Should create a CONFIRMED appointment with snapshotted fee and duration."""
        appointment = book()

        assert appointment.status == AppointmentStatus.CONFIRMED.value
        assert appointment.start_time == "09:00"
        assert appointment.end_time == "09:15"
        assert appointment.duration == 15
        assert appointment.fee == 500.0
        assert appointment.reschedule_count == 0
        assert appointment.created_at == NOW
        assert appointment.confirmed_at == NOW
        assert appointment.booking_ref.startswith("CB")
        assert [e.kind for e in events.received] == [EventKind.BOOKED]
        assert events.received[0].patient_phone == "+919876543210"

    def test_book_pending_when_payment_required(self, book, set_rules):
        set_rules(require_payment=True)
        appointment = book()
        assert appointment.status == AppointmentStatus.PENDING.value
        assert appointment.confirmed_at is None

    def test_same_slot_twice_rejected_with_alternatives(self, book, other_patient):
        """The second booking should see the slot gone and get fresh alternatives."""
        book()
        with pytest.raises(SlotNoLongerAvailable) as exc_info:
            book(who=other_patient)

        alternatives = exc_info.value.extra["alternatives"]
        assert alternatives
        assert "09:00" not in [slot["time"] for slot in alternatives]

    def test_off_grid_time_rejected(self, book):
        """Only generated slot starts can be booked."""
        with pytest.raises(SlotNoLongerAvailable):
            book(time="09:05")

    def test_day_without_availability(self, book):
        with pytest.raises(SlotNoLongerAvailable):
            book(day=TUESDAY)

    def test_min_advance_boundary(self, book):
        """At now = T, T + minAdvance - 1 minute fails and T + minAdvance succeeds."""
        with pytest.raises(OutsideBookingWindow):
            book(time="09:00", now=datetime(2026, 1, 5, 8, 1))
        appointment = book(time="09:00", now=datetime(2026, 1, 5, 8, 0))
        assert appointment.start_time == "09:00"

    def test_blocked_time_rejected(self, db, clinic, book):
        db.add(BlockedSlot(doctor_id=clinic.doctor_id, date=MONDAY, start_time="09:00", end_time="10:00"))
        db.commit()
        with pytest.raises(SlotNoLongerAvailable):
            book(time="09:20")
        assert book(time="10:00").start_time == "10:00"

    def test_daily_limit(self, book, set_rules, other_patient):
        set_rules(max_bookings_per_day=1)
        book()
        with pytest.raises(DailyBookingLimitReached):
            book(time="10:00", who=other_patient)

    def test_patient_limit(self, book, set_rules, other_patient):
        set_rules(max_bookings_per_patient=1)
        book()
        with pytest.raises(PatientBookingLimitReached):
            book(time="10:00")
        assert book(time="10:00", who=other_patient).start_time == "10:00"

    def test_returning_patient_reuses_record(self, book):
        first = book()
        second = book(time="10:00")
        assert first.patient_id == second.patient_id

    def test_phone_format_does_not_split_patient(self, book, set_rules):
        """The same number typed differently is still one patient for the daily cap."""
        set_rules(max_bookings_per_patient=1)
        book()
        with pytest.raises(PatientBookingLimitReached):
            book(time="10:00", who=PatientInfo(name="Ravi Kumar", phone="98765 43210"))

    def test_patient_inserted_concurrently_is_reused(self, db, monkeypatch, book):
        """A patient row created by a parallel booking makes this one retry, not fail."""
        first = book()
        real_find = SchedulingRepository.find_patient
        misses = []

        def stale_find(session, doctor_id, key):
            if not misses:
                misses.append(key)
                return None
            return real_find(session, doctor_id, key)

        monkeypatch.setattr(SchedulingRepository, "find_patient", staticmethod(stale_find))
        second = book(time="10:00")

        assert misses == ["9876543210"]
        assert second.patient_id == first.patient_id
        assert db.query(Patient).count() == 1

    def test_booking_ref_collision_retries_with_new_ref(self, monkeypatch, manager, book):
        first = book()
        refs = iter([first.booking_ref, "CBFRESH234"])
        monkeypatch.setattr(manager, "new_booking_ref", lambda: next(refs))

        second = book(time="10:00")

        assert second.booking_ref == "CBFRESH234"
        assert second.start_time == "10:00"

    def test_unique_index_backstop_reports_conflict(self, db, manager, clinic, book, other_patient):
        """A stale slot read that reaches the insert is turned into SlotConflict."""
        book()
        # Simulate a reader that missed the committed booking
        manager.slots.booked_intervals = lambda *args, **kwargs: []

        with pytest.raises(SlotConflict) as exc_info:
            manager.book(
                doctor_id=clinic.doctor_id,
                consultation_type_id=clinic.consultation_type_id,
                target_date=MONDAY,
                time="09:00",
                patient=other_patient,
                now=NOW,
            )

        assert exc_info.value.status_code == 409
        assert exc_info.value.extra["alternatives"]
        assert len(live_appointments(db, clinic.doctor_id)) == 1

    def test_concurrent_bookings_for_last_slot(self, session_factory, clinic):
        """Two patients racing for the same slot: exactly one wins."""
        barrier = threading.Barrier(2)
        results = []
        errors = []

        def attempt(name, phone):
            session = session_factory()
            try:
                manager = AppointmentLifecycleManager(session)
                barrier.wait()
                appointment = manager.book(
                    doctor_id=clinic.doctor_id,
                    consultation_type_id=clinic.consultation_type_id,
                    target_date=MONDAY,
                    time="11:00",
                    patient=PatientInfo(name=name, phone=phone),
                    now=NOW,
                )
                results.append(appointment.id)
            except (SlotNoLongerAvailable, SlotConflict) as e:
                errors.append(e)
            finally:
                session.close()

        threads = [
            threading.Thread(target=attempt, args=("Ravi Kumar", "9876543210")),
            threading.Thread(target=attempt, args=("Meera Iyer", "9812345678")),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert len(results) == 1
        assert len(errors) == 1

        session = session_factory()
        try:
            booked = [a for a in live_appointments(session, clinic.doctor_id) if a.start_time == "11:00"]
            assert len(booked) == 1
        finally:
            session.close()

    def test_concurrent_overlapping_bookings_with_different_starts(
        self, session_factory, clinic, long_consultation
    ):
        """A 30-minute 09:00 and a 15-minute 09:20 overlap; only one may be stored."""
        barrier = threading.Barrier(2)
        results = []
        errors = []

        def attempt(consultation_type_id, time, name, phone):
            session = session_factory()
            try:
                manager = AppointmentLifecycleManager(session)
                barrier.wait()
                appointment = manager.book(
                    doctor_id=clinic.doctor_id,
                    consultation_type_id=consultation_type_id,
                    target_date=MONDAY,
                    time=time,
                    patient=PatientInfo(name=name, phone=phone),
                    now=NOW,
                )
                results.append(appointment.start_time)
            except (SlotNoLongerAvailable, SlotConflict) as e:
                errors.append(e)
            finally:
                session.close()

        threads = [
            threading.Thread(
                target=attempt, args=(long_consultation, "09:00", "Ravi Kumar", "9876543210")
            ),
            threading.Thread(
                target=attempt,
                args=(clinic.consultation_type_id, "09:20", "Meera Iyer", "9812345678"),
            ),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert len(results) == 1
        assert len(errors) == 1

        session = session_factory()
        try:
            assert len(live_appointments(session, clinic.doctor_id)) == 1
        finally:
            session.close()


class TestCancel:
    def test_cancel_at_exact_window_boundary(self, manager, book, events):
        """240 minutes before a 09:00 start is the last moment to cancel."""
        appointment = book()
        cancelled = manager.cancel(
            appointment.id, datetime(2026, 1, 5, 5, 0), actor="patient", reason="Feeling better"
        )

        assert cancelled.status == AppointmentStatus.CANCELLED.value
        assert cancelled.cancelled_by == "patient"
        assert cancelled.cancellation_reason == "Feeling better"
        assert cancelled.cancelled_at == datetime(2026, 1, 5, 5, 0)
        assert events.received[-1].kind == EventKind.CANCELLED

    def test_cancel_inside_window_fails(self, manager, book):
        appointment = book()
        with pytest.raises(CancellationWindowPassed):
            manager.cancel(appointment.id, datetime(2026, 1, 5, 6, 0))
        assert manager.get_appointment(appointment.id).status == AppointmentStatus.CONFIRMED.value

    def test_cancel_twice_is_an_error_not_a_corruption(self, manager, book):
        appointment = book()
        manager.cancel(appointment.id, NOW)
        with pytest.raises(AppointmentAlreadyCancelled):
            manager.cancel(appointment.id, NOW)

        again = manager.get_appointment(appointment.id)
        assert again.status == AppointmentStatus.CANCELLED.value
        assert again.cancelled_at == NOW

    def test_cancel_releases_slot(self, manager, book, other_patient):
        appointment = book()
        manager.cancel(appointment.id, NOW)
        assert book(who=other_patient).start_time == "09:00"

    def test_unknown_appointment(self, manager):
        with pytest.raises(AppointmentNotFound):
            manager.cancel(12345, NOW)


class TestReschedule:
    def test_reschedule_in_place(self, manager, book, events):
        """Same row, new time, count incremented, original time remembered."""
        appointment = book()
        moved = manager.reschedule(appointment.id, MONDAY, "10:00", NOW)

        assert moved.id == appointment.id
        assert moved.booking_ref == appointment.booking_ref
        assert moved.start_time == "10:00"
        assert moved.end_time == "10:15"
        assert moved.reschedule_count == 1
        assert moved.original_date == MONDAY
        assert moved.original_start_time == "09:00"
        assert moved.status == AppointmentStatus.CONFIRMED.value

        event = events.received[-1]
        assert event.kind == EventKind.RESCHEDULED
        assert event.previous_start_time == "09:00"

    def test_original_kept_from_first_reschedule(self, manager, book):
        appointment = book()
        manager.reschedule(appointment.id, MONDAY, "10:00", NOW)
        moved = manager.reschedule(appointment.id, MONDAY, "11:00", NOW)
        assert moved.original_start_time == "09:00"
        assert moved.reschedule_count == 2

    def test_adjacent_slot_not_blocked_by_itself(self, manager, book):
        """The appointment's own buffer does not block moving next door."""
        appointment = book()
        assert manager.reschedule(appointment.id, MONDAY, "09:20", NOW).start_time == "09:20"

    def test_old_slot_released(self, manager, book, other_patient):
        appointment = book()
        manager.reschedule(appointment.id, MONDAY, "10:00", NOW)
        assert book(who=other_patient).start_time == "09:00"

    def test_reschedule_onto_taken_slot(self, manager, book, other_patient):
        """Moving onto another booking is rejected like a fresh collision."""
        appointment = book()
        book(time="10:00", who=other_patient)
        with pytest.raises(SlotNoLongerAvailable):
            manager.reschedule(appointment.id, MONDAY, "10:00", NOW)

    def test_cap_reached_regardless_of_timing(self, manager, book):
        """After maxReschedules moves, a further move fails even well inside the window."""
        appointment = book()
        manager.reschedule(appointment.id, MONDAY, "10:00", NOW)
        manager.reschedule(appointment.id, MONDAY, "11:00", NOW)

        with pytest.raises(MaxReschedulesExceeded):
            manager.reschedule(appointment.id, MONDAY, "12:00", NOW)
        with pytest.raises(MaxReschedulesExceeded):
            manager.reschedule(appointment.id, MONDAY, "12:00", datetime(2026, 1, 5, 10, 55))

    def test_cancelled_cannot_be_rescheduled(self, manager, book):
        appointment = book()
        manager.cancel(appointment.id, NOW)
        with pytest.raises(InvalidStatusTransition):
            manager.reschedule(appointment.id, MONDAY, "10:00", NOW)

    def test_pending_stays_pending_while_payment_required(self, manager, book, set_rules):
        set_rules(require_payment=True)
        appointment = book()
        moved = manager.reschedule(appointment.id, MONDAY, "10:00", NOW)
        assert moved.status == AppointmentStatus.PENDING.value

    def test_pending_confirmed_once_payment_no_longer_required(self, manager, book, set_rules):
        set_rules(require_payment=True)
        appointment = book()
        set_rules(require_payment=False)
        moved = manager.reschedule(appointment.id, MONDAY, "10:00", NOW)
        assert moved.status == AppointmentStatus.CONFIRMED.value


class TestStatusWorkflow:
    def test_full_visit(self, manager, book, events):
        appointment = book()
        visit_day = datetime(2026, 1, 5, 9, 0)
        manager.transition(appointment.id, AppointmentStatus.CHECKED_IN, visit_day)
        manager.transition(appointment.id, AppointmentStatus.IN_PROGRESS, visit_day)
        done = manager.transition(appointment.id, AppointmentStatus.COMPLETED, visit_day)

        assert done.status == AppointmentStatus.COMPLETED.value
        assert done.completed_at == visit_day
        assert [e.kind for e in events.received] == [
            EventKind.BOOKED,
            EventKind.CHECKED_IN,
            EventKind.IN_PROGRESS,
            EventKind.COMPLETED,
        ]

    def test_illegal_jump(self, manager, book):
        appointment = book()
        with pytest.raises(InvalidStatusTransition):
            manager.transition(appointment.id, AppointmentStatus.COMPLETED, NOW)

    def test_cancel_only_through_cancel(self, manager, book):
        appointment = book()
        with pytest.raises(InvalidStatusTransition):
            manager.transition(appointment.id, AppointmentStatus.CANCELLED, NOW)

    def test_completed_cannot_be_cancelled(self, manager, book):
        appointment = book()
        for status in ("CHECKED_IN", "IN_PROGRESS", "COMPLETED"):
            manager.transition(appointment.id, AppointmentStatus(status), NOW)
        with pytest.raises(InvalidStatusTransition):
            manager.cancel(appointment.id, NOW)

    def test_no_show(self, manager, book):
        appointment = book()
        assert manager.transition(appointment.id, AppointmentStatus.NO_SHOW, NOW).status == "NO_SHOW"


class TestPayments:
    def test_mark_paid_confirms_pending(self, manager, book, set_rules, events):
        set_rules(require_payment=True)
        appointment = book()
        paid = manager.mark_paid(appointment.id, NOW, payment_reference="pay_123")

        assert paid.status == AppointmentStatus.CONFIRMED.value
        assert paid.payment_status == "PAID"
        assert paid.payment_reference == "pay_123"
        assert events.received[-1].kind == EventKind.CONFIRMED

    def test_expire_unpaid_after_ttl(self, manager, book, set_rules, other_patient, events):
        set_rules(require_payment=True, pending_payment_ttl=30)
        appointment = book()

        assert manager.expire_unpaid(NOW + timedelta(minutes=29)) == 0
        assert manager.expire_unpaid(NOW + timedelta(minutes=30)) == 1

        expired = manager.get_appointment(appointment.id)
        assert expired.status == AppointmentStatus.CANCELLED.value
        assert expired.cancelled_by == "system"
        assert events.received[-1].kind == EventKind.EXPIRED
        # The slot is free again
        assert book(who=other_patient, now=NOW + timedelta(minutes=31)).start_time == "09:00"

    def test_paid_reservation_not_expired(self, manager, book, set_rules):
        set_rules(require_payment=True, pending_payment_ttl=30)
        appointment = book()
        manager.mark_paid(appointment.id, NOW)
        assert manager.expire_unpaid(NOW + timedelta(hours=2)) == 0

    def test_expired_reservation_cannot_be_paid(self, manager, book, set_rules):
        set_rules(require_payment=True, pending_payment_ttl=30)
        appointment = book()
        manager.expire_unpaid(NOW + timedelta(hours=1))
        with pytest.raises(InvalidStatusTransition):
            manager.mark_paid(appointment.id, NOW + timedelta(hours=1))


class TestReminders:
    def test_reminder_sent_once_inside_window(self, manager, book, events):
        book()
        # 25 hours ahead: outside the default 24 hour window
        assert manager.send_reminders(NOW) == 0
        assert manager.send_reminders(datetime(2026, 1, 4, 9, 30)) == 1
        assert manager.send_reminders(datetime(2026, 1, 4, 10, 0)) == 0
        assert events.received[-1].kind == EventKind.REMINDER

    def test_reminders_disabled(self, manager, book, set_rules):
        set_rules(send_reminder=False)
        book()
        assert manager.send_reminders(datetime(2026, 1, 4, 9, 30)) == 0

    def test_default_rules_doctor_reminded_beside_short_windows(
        self, manager, set_rules, second_clinic, patient
    ):
        """A doctor without stored rules keeps the 24 hour default when others use 2 hours."""
        set_rules(reminder_hours=2)
        manager.book(
            doctor_id=second_clinic.doctor_id,
            consultation_type_id=second_clinic.consultation_type_id,
            target_date=MONDAY,
            time="09:00",
            patient=patient,
            now=NOW,
        )

        assert manager.send_reminders(datetime(2026, 1, 4, 12, 0)) == 1


class TestEvents:
    def test_failing_handler_does_not_undo_booking(self, db, book, events, clinic):
        def broken(event):
            raise RuntimeError("SMS gateway down")

        events.dispatcher.subscribe(broken)
        appointment = book()

        assert appointment.id is not None
        assert len(live_appointments(db, clinic.doctor_id)) == 1
        assert [e.kind for e in events.received] == [EventKind.BOOKED]


class TestBookingRef:
    def test_format(self):
        ref = generate_booking_ref()
        assert len(ref) == 10
        assert ref.startswith("CB")
        assert set(ref[2:]) <= set(BOOKING_REF_ALPHABET)

    def test_lookup_is_case_insensitive(self, manager, book):
        appointment = book()
        assert manager.get_by_booking_ref(appointment.booking_ref.lower()).id == appointment.id
        with pytest.raises(AppointmentNotFound):
            manager.get_by_booking_ref("CBNOPE")
