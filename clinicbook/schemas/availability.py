"""
Weekly availability template.

A doctor's week is one ``WeeklyAvailability`` value with a fixed field per
weekday. Each ``AvailabilityWindow`` is validated as a whole, so a stored
template is always usable by the slot generator.
"""
from datetime import date
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_TIME_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


def time_to_minutes(value: str) -> int:
    """Convert ``HH:MM`` (or ``H:MM``) to minutes since midnight."""
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time format {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def minutes_to_time(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def normalize_time(value: str) -> str:
    """Return the zero-padded ``HH:MM`` form of a time string."""
    return minutes_to_time(time_to_minutes(value))


class AvailabilityWindow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    is_available: bool = False
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    break_start: Optional[str] = None
    break_end: Optional[str] = None
    slot_duration: int = Field(30, ge=5, le=240)
    max_appointments: int = Field(20, ge=1)

    @field_validator("start_time", "end_time", "break_start", "break_end")
    @classmethod
    def _normalize(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        return normalize_time(value)

    @model_validator(mode="after")
    def _check_window(self):
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be given together")
        if not self.is_available:
            return self

        if self.start_time is None or self.end_time is None:
            raise ValueError("Start time and end time are required when available")
        start = time_to_minutes(self.start_time)
        end = time_to_minutes(self.end_time)
        if start >= end:
            raise ValueError("start_time must be before end_time")

        if self.break_start is not None:
            break_start = time_to_minutes(self.break_start)
            break_end = time_to_minutes(self.break_end)
            if break_start >= break_end:
                raise ValueError("break_start must be before break_end")
            if break_start < start or break_end > end:
                raise ValueError("Break must fall inside the working window")
        return self


class WeeklyAvailability(BaseModel):
    monday: AvailabilityWindow = Field(default_factory=AvailabilityWindow)
    tuesday: AvailabilityWindow = Field(default_factory=AvailabilityWindow)
    wednesday: AvailabilityWindow = Field(default_factory=AvailabilityWindow)
    thursday: AvailabilityWindow = Field(default_factory=AvailabilityWindow)
    friday: AvailabilityWindow = Field(default_factory=AvailabilityWindow)
    saturday: AvailabilityWindow = Field(default_factory=AvailabilityWindow)
    sunday: AvailabilityWindow = Field(default_factory=AvailabilityWindow)

    def for_weekday(self, weekday: int) -> AvailabilityWindow:
        """Window for ``weekday`` (0 = Monday, as ``date.weekday()``)."""
        return getattr(self, WEEKDAYS[weekday])

    def for_date(self, on_date: date) -> AvailabilityWindow:
        return self.for_weekday(on_date.weekday())
