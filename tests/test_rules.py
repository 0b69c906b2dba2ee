"""Tests for the booking rule engine."""

from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from clinicbook.domain.scheduling.errors import (
    AppointmentAlreadyCancelled,
    CancellationNotAllowed,
    CancellationWindowPassed,
    InvalidStatusTransition,
    MaxReschedulesExceeded,
    OutsideBookingWindow,
    RescheduleWindowPassed,
    ReschedulingNotAllowed,
)
from clinicbook.domain.scheduling.rules import BookingRuleEngine
from clinicbook.domain.scheduling.schemas import BookingAction, BookingRules

START = datetime(2026, 1, 5, 9, 0)


def appointment(status="CONFIRMED", reschedule_count=0):
    return SimpleNamespace(
        date=date(2026, 1, 5), start_time="09:00", status=status, reschedule_count=reschedule_count
    )


@pytest.fixture
def engine() -> BookingRuleEngine:
    return BookingRuleEngine(BookingRules())


class TestBook:
    def test_exactly_min_advance_allowed(self, engine):
        """now + minAdvanceBooking is the earliest bookable start."""
        engine.check_book(START, START - timedelta(minutes=60))

    def test_one_minute_short_of_min_advance_rejected(self, engine):
        with pytest.raises(OutsideBookingWindow):
            engine.check_book(START, START - timedelta(minutes=59))

    def test_beyond_max_advance_rejected(self, engine):
        with pytest.raises(OutsideBookingWindow):
            engine.check_book(START, START - timedelta(minutes=43201))

    def test_exactly_max_advance_allowed(self, engine):
        engine.check_book(START, START - timedelta(minutes=43200))


class TestCancel:
    def test_cancellation_at_window_boundary_succeeds(self, engine):
        """Exactly cancellationWindow minutes before start is still allowed."""
        engine.check_cancel(appointment(), START - timedelta(minutes=240))

    def test_cancellation_inside_window_fails(self, engine):
        """180 minutes before start with a 240 minute window is too late."""
        with pytest.raises(CancellationWindowPassed):
            engine.check_cancel(appointment(), START - timedelta(minutes=180))

    def test_cancellation_disabled(self):
        engine = BookingRuleEngine(BookingRules(allow_cancellation=False))
        with pytest.raises(CancellationNotAllowed):
            engine.check_cancel(appointment(), START - timedelta(days=2))

    def test_already_cancelled(self, engine):
        with pytest.raises(AppointmentAlreadyCancelled):
            engine.check_cancel(appointment(status="CANCELLED"), START - timedelta(days=2))

    @pytest.mark.parametrize("status", ["COMPLETED", "NO_SHOW", "RESCHEDULED"])
    def test_terminal_states_not_cancellable(self, engine, status):
        with pytest.raises(InvalidStatusTransition):
            engine.check_cancel(appointment(status=status), START - timedelta(days=2))

    def test_pending_can_be_cancelled(self, engine):
        engine.check_cancel(appointment(status="PENDING"), START - timedelta(days=2))


class TestReschedule:
    def test_reschedule_allowed(self, engine):
        engine.check_reschedule(appointment(), START - timedelta(minutes=240))

    def test_reschedule_window_passed(self, engine):
        with pytest.raises(RescheduleWindowPassed):
            engine.check_reschedule(appointment(), START - timedelta(minutes=239))

    def test_reschedule_disabled(self):
        engine = BookingRuleEngine(BookingRules(allow_rescheduling=False))
        with pytest.raises(ReschedulingNotAllowed):
            engine.check_reschedule(appointment(), START - timedelta(days=2))

    def test_count_cap_checked_before_timing(self, engine):
        """MaxReschedulesExceeded wins even when the window has also passed."""
        with pytest.raises(MaxReschedulesExceeded):
            engine.check_reschedule(appointment(reschedule_count=2), START - timedelta(minutes=5))

    @pytest.mark.parametrize(
        "status", ["CHECKED_IN", "IN_PROGRESS", "CANCELLED", "COMPLETED", "NO_SHOW"]
    )
    def test_started_or_closed_appointments_not_reschedulable(self, engine, status):
        with pytest.raises(InvalidStatusTransition):
            engine.check_reschedule(appointment(status=status), START - timedelta(days=2))

    def test_checked_in_not_reschedulable_without_window(self):
        """A patient already at the clinic cannot be moved, even with no reschedule window."""
        engine = BookingRuleEngine(BookingRules(rescheduling_window=0))
        with pytest.raises(InvalidStatusTransition):
            engine.check_reschedule(appointment(status="CHECKED_IN"), START - timedelta(minutes=1))

    def test_zero_max_reschedules(self):
        engine = BookingRuleEngine(BookingRules(max_reschedules=0))
        with pytest.raises(MaxReschedulesExceeded):
            engine.check_reschedule(appointment(), START - timedelta(days=2))


class TestEvaluate:
    def test_dispatches_by_action(self, engine):
        now = START - timedelta(minutes=200)
        with pytest.raises(CancellationWindowPassed):
            engine.evaluate(BookingAction.CANCEL, now, appointment=appointment())
        with pytest.raises(RescheduleWindowPassed):
            engine.evaluate(BookingAction.RESCHEDULE, now, appointment=appointment())
        engine.evaluate(BookingAction.BOOK, now, target_start=START)

    def test_reschedule_target_must_pass_book(self, engine):
        """The new target is checked against the advance window too."""
        now = START - timedelta(days=2)
        with pytest.raises(OutsideBookingWindow):
            engine.evaluate(
                BookingAction.RESCHEDULE,
                now,
                appointment=appointment(),
                target_start=now + timedelta(minutes=30),
            )
