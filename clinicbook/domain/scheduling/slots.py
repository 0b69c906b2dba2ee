"""
Slot Generator

Turns availability windows into discrete bookable slots:
- each slot lasts exactly ``duration`` minutes and sits fully inside a window
- starts are spaced ``duration + buffer`` apart from the window start
- a slot may not touch an existing appointment's buffer-expanded interval
- a slot may not overlap a blocked range
- a slot must start within [now + minAdvanceBooking, now + maxAdvanceBooking]

Output is a pure function of the inputs; "now" is always passed in.
"""

from datetime import date, datetime, timedelta
from typing import Iterable

from .errors import ConfigurationError
from .schemas import BookingRules, BusyInterval, SlotGroups, TimeSlot, TimeWindow
from .time_calculator import (
    combine,
    format_display_time,
    minutes_to_time,
    ranges_overlap,
    to_local_minutes,
)

NOON = 12 * 60
EVENING = 17 * 60

REASON_ADVANCE_MIN = "Before minimum advance booking time"
REASON_ADVANCE_MAX = "Beyond maximum advance booking time"
REASON_BOOKED = "Conflicts with existing appointment"
REASON_BLOCKED = "Time is blocked"


class SlotGenerator:
    def __init__(self, duration: int, buffer_time: int, rules: BookingRules):
        if duration <= 0:
            raise ConfigurationError(f"Consultation duration must be positive, got {duration}")
        if buffer_time < 0:
            raise ConfigurationError(f"Buffer time cannot be negative, got {buffer_time}")
        rules.ensure_consistent()
        self.duration = duration
        self.buffer_time = buffer_time
        self.rules = rules

    def candidates(self, window: TimeWindow) -> list[tuple[int, int]]:
        """Raw [start, end) minute pairs for one window, ignoring conflicts."""
        pairs = []
        step = self.duration + self.buffer_time
        cursor = window.start_minutes
        while cursor + self.duration <= window.end_minutes:
            pairs.append((cursor, cursor + self.duration))
            cursor += step
        return pairs

    def evaluate(
        self,
        target_date: date,
        windows: Iterable[TimeWindow],
        booked: Iterable[BusyInterval],
        blocked: Iterable[BusyInterval],
        now: datetime,
    ) -> list[TimeSlot]:
        """Every candidate slot for the date, flagged available or not (with a reason)."""
        booked = list(booked)
        blocked = list(blocked)
        earliest = now + timedelta(minutes=self.rules.min_advance_booking)
        latest = now + timedelta(minutes=self.rules.max_advance_booking)

        by_start: dict[int, TimeSlot] = {}
        for window in windows:
            for start, end in self.candidates(window):
                reason = self._rejection(target_date, start, end, booked, blocked, earliest, latest)
                slot = TimeSlot(
                    time=minutes_to_time(start),
                    displayTime=format_display_time(minutes_to_time(start)),
                    endTime=minutes_to_time(end),
                    displayEndTime=format_display_time(minutes_to_time(end)),
                    duration=self.duration,
                    available=reason is None,
                    reason=reason,
                )
                existing = by_start.get(start)
                # Overlapping windows: an unavailable verdict wins
                if existing is None or (existing.available and not slot.available):
                    by_start[start] = slot

        return [by_start[start] for start in sorted(by_start)]

    def generate(
        self,
        target_date: date,
        windows: Iterable[TimeWindow],
        booked: Iterable[BusyInterval],
        blocked: Iterable[BusyInterval],
        now: datetime,
    ) -> list[TimeSlot]:
        """Bookable slots only, ordered by start time."""
        return [s for s in self.evaluate(target_date, windows, booked, blocked, now) if s.available]

    def _rejection(self, target_date, start, end, booked, blocked, earliest, latest):
        slot_start = combine(target_date, minutes_to_time(start))
        if slot_start < earliest:
            return REASON_ADVANCE_MIN
        if slot_start > latest:
            return REASON_ADVANCE_MAX

        for interval in booked:
            guarded = (
                interval.start_minutes - self.buffer_time,
                interval.end_minutes + self.buffer_time,
            )
            if ranges_overlap((start, end), guarded):
                return REASON_BOOKED

        for interval in blocked:
            if ranges_overlap((start, end), (interval.start_minutes, interval.end_minutes)):
                return REASON_BLOCKED

        return None


def group_slots(slots: Iterable[TimeSlot]) -> SlotGroups:
    """Morning (<12:00), afternoon (12:00-17:00), evening (>=17:00). Display only."""
    groups = SlotGroups()
    for slot in slots:
        minutes = to_local_minutes(slot.time)
        if minutes < NOON:
            groups.morning.append(slot)
        elif minutes < EVENING:
            groups.afternoon.append(slot)
        else:
            groups.evening.append(slot)
    return groups


def summarize(slots: list[TimeSlot]) -> dict:
    groups = group_slots(slots)
    return {
        "total": len(slots),
        "morning": len(groups.morning),
        "afternoon": len(groups.afternoon),
        "evening": len(groups.evening),
    }
