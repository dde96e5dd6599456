"""Derive bookable slot times from a weekly availability template."""
from datetime import date
from typing import List, Optional

from ..schemas.availability import (
    AvailabilityWindow, WeeklyAvailability, minutes_to_time, time_to_minutes
)


def generate_slots(window: AvailabilityWindow) -> List[str]:
    """Return the ordered ``HH:MM`` start times a single day window offers.

    Steps from start (inclusive) to end (exclusive) by ``slot_duration`` and
    drops steps that begin inside ``[break_start, break_end)``. Never looks at
    existing bookings.
    """
    if not window.is_available:
        return []

    start = time_to_minutes(window.start_time)
    end = time_to_minutes(window.end_time)
    break_start: Optional[int] = None
    break_end: Optional[int] = None
    if window.break_start and window.break_end:
        break_start = time_to_minutes(window.break_start)
        break_end = time_to_minutes(window.break_end)

    slots = []
    for minutes in range(start, end, window.slot_duration):
        if break_start is not None and break_start <= minutes < break_end:
            continue
        slots.append(minutes_to_time(minutes))
    return slots


def slots_for_date(availability: WeeklyAvailability, on_date: date) -> List[str]:
    """Slot grid for ``on_date`` using that weekday's window."""
    return generate_slots(availability.for_date(on_date))
