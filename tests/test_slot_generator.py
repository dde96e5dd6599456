import pytest
from datetime import date
from pydantic import ValidationError

from clinicbook.schemas.availability import (
    AvailabilityWindow, WeeklyAvailability, normalize_time, time_to_minutes
)
from clinicbook.services.slot_generator import generate_slots, slots_for_date
from tests.factories import MORNING, standard_week

MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)


class TestGenerateSlots:

    def test_monday_morning_with_break(self):
        """Slots skip the 10:00-10:30 break."""
        week = WeeklyAvailability(monday=MORNING)
        assert slots_for_date(week, MONDAY) == ["09:00", "09:30", "10:30", "11:00", "11:30"]

    def test_unavailable_day_is_empty(self):
        week = WeeklyAvailability(monday=MORNING)
        assert slots_for_date(week, TUESDAY) == []
        assert generate_slots(AvailabilityWindow()) == []

    def test_end_time_is_exclusive(self):
        window = AvailabilityWindow(is_available=True, start_time="09:00", end_time="10:45", slot_duration=30)
        assert generate_slots(window) == ["09:00", "09:30", "10:00", "10:30"]

    def test_no_break(self):
        window = AvailabilityWindow(is_available=True, start_time="14:00", end_time="15:00", slot_duration=15)
        assert generate_slots(window) == ["14:00", "14:15", "14:30", "14:45"]

    @pytest.mark.parametrize("start,end,break_start,break_end,duration", [
        ("08:00", "17:00", "12:00", "13:00", 30),
        ("08:00", "17:00", "12:10", "12:50", 20),
        ("09:30", "18:00", "13:00", "14:00", 45),
        ("07:00", "11:00", None, None, 60),
        ("00:00", "23:59", "12:00", "12:01", 15),
    ])
    def test_slot_count_matches_steps_outside_break(self, start, end, break_start, break_end, duration):
        window = AvailabilityWindow(
            is_available=True, start_time=start, end_time=end,
            break_start=break_start, break_end=break_end, slot_duration=duration,
        )
        slots = generate_slots(window)

        steps = list(range(time_to_minutes(start), time_to_minutes(end), duration))
        if break_start:
            bs, be = time_to_minutes(break_start), time_to_minutes(break_end)
            steps = [m for m in steps if not bs <= m < be]
            assert all(not bs <= time_to_minutes(s) < be for s in slots)
        assert len(slots) == len(steps)
        assert slots == sorted(slots)

    def test_generation_is_deterministic(self):
        week = standard_week()
        assert slots_for_date(week, MONDAY) == slots_for_date(week, MONDAY)

    def test_single_digit_hours_are_zero_padded(self):
        window = AvailabilityWindow(is_available=True, start_time="8:00", end_time="9:00", slot_duration=30)
        assert window.start_time == "08:00"
        assert generate_slots(window) == ["08:00", "08:30"]


class TestAvailabilityWindow:

    def test_missing_times_when_available(self):
        with pytest.raises(ValidationError):
            AvailabilityWindow(is_available=True, start_time="09:00")

    def test_start_after_end(self):
        with pytest.raises(ValidationError):
            AvailabilityWindow(is_available=True, start_time="12:00", end_time="09:00")

    def test_break_outside_window(self):
        with pytest.raises(ValidationError):
            AvailabilityWindow(
                is_available=True, start_time="09:00", end_time="12:00",
                break_start="12:00", break_end="13:00",
            )

    def test_break_requires_both_ends(self):
        with pytest.raises(ValidationError):
            AvailabilityWindow(is_available=True, start_time="09:00", end_time="12:00", break_start="10:00")

    def test_bad_time_format(self):
        with pytest.raises(ValidationError):
            AvailabilityWindow(is_available=True, start_time="25:00", end_time="26:00")

    def test_unavailable_day_needs_no_times(self):
        window = AvailabilityWindow(is_available=False)
        assert window.start_time is None

    def test_weekly_defaults_to_unavailable(self):
        week = WeeklyAvailability.model_validate({"monday": MORNING.model_dump()})
        assert week.for_date(MONDAY).is_available
        assert not week.sunday.is_available


def test_normalize_time_rejects_garbage():
    assert normalize_time("7:05") == "07:05"
    with pytest.raises(ValueError):
        normalize_time("noon")
