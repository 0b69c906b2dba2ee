"""Tests for date/time helpers."""

from datetime import date, datetime, time

import pytest

from clinicbook.domain.scheduling.errors import InvalidTimeFormat
from clinicbook.domain.scheduling.schemas import DayOfWeek
from clinicbook.domain.scheduling.time_calculator import (
    add_minutes,
    combine,
    date_range,
    day_of_week,
    format_display_time,
    minutes_to_time,
    parse_date,
    ranges_overlap,
    to_local_minutes,
)


class TestTimeParsing:
    def test_to_local_minutes(self):
        """Should convert HH:MM and time objects to minutes since midnight."""
        assert to_local_minutes("00:00") == 0
        assert to_local_minutes("09:20") == 560
        assert to_local_minutes("23:59") == 1439
        assert to_local_minutes(time(13, 5)) == 785

    @pytest.mark.parametrize("value", ["9:00", "24:00", "12:60", "noon", "", None])
    def test_malformed_time_rejected(self, value):
        """Should raise InvalidTimeFormat for anything but HH:MM."""
        with pytest.raises(InvalidTimeFormat):
            to_local_minutes(value)

    def test_add_minutes(self):
        """Should add minutes and refuse to cross midnight."""
        assert add_minutes("09:00", 15) == "09:15"
        assert add_minutes("11:50", 20) == "12:10"
        with pytest.raises(InvalidTimeFormat):
            add_minutes("23:50", 15)

    def test_minutes_to_time_bounds(self):
        """Should only accept offsets inside one day."""
        assert minutes_to_time(0) == "00:00"
        with pytest.raises(InvalidTimeFormat):
            minutes_to_time(-1)
        with pytest.raises(InvalidTimeFormat):
            minutes_to_time(1440)

    def test_parse_date(self):
        """Should parse ISO dates and reject other formats."""
        assert parse_date("2026-01-05") == date(2026, 1, 5)
        assert parse_date(date(2026, 1, 5)) == date(2026, 1, 5)
        with pytest.raises(InvalidTimeFormat):
            parse_date("05/01/2026")


class TestCalendar:
    def test_day_of_week(self):
        """Should map dates to weekday names."""
        assert day_of_week(date(2026, 1, 5)) == DayOfWeek.MONDAY
        assert day_of_week(date(2026, 1, 4)) == DayOfWeek.SUNDAY

    def test_ranges_overlap_is_half_open(self):
        """Touching intervals should not overlap."""
        assert ranges_overlap((540, 555), (550, 600))
        assert not ranges_overlap((540, 555), (555, 570))
        assert not ranges_overlap((555, 570), (540, 555))

    def test_combine(self):
        """Should build a naive datetime from a date and HH:MM."""
        assert combine(date(2026, 1, 5), "09:20") == datetime(2026, 1, 5, 9, 20)

    def test_format_display_time(self):
        """Should render 12-hour times."""
        assert format_display_time("00:05") == "12:05 AM"
        assert format_display_time("12:00") == "12:00 PM"
        assert format_display_time("13:40") == "1:40 PM"

    def test_date_range(self):
        """Should yield consecutive days."""
        days = list(date_range(date(2026, 1, 30), 3))
        assert days == [date(2026, 1, 30), date(2026, 1, 31), date(2026, 2, 1)]
