from datetime import date, datetime, time, timedelta, tzinfo, timezone
from typing import Optional

from ..core.config import settings
from ..models.appointment import ACTIVE_STATUSES
from ..schemas.availability import time_to_minutes


def scheduled_datetime(appointment_date: date, appointment_time: str, tz: tzinfo = timezone.utc) -> datetime:
    """Combine a slot date and ``HH:MM`` time into an aware datetime in ``tz``."""
    hours, minutes = divmod(time_to_minutes(appointment_time), 60)
    return datetime.combine(appointment_date, time(hours, minutes), tzinfo=tz)


def as_aware(moment: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Treat naive datetimes as wall-clock time in ``tz``."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment


class CancellationPolicy:
    """Cancellation is allowed while an appointment is active and more than
    ``lead_time`` remains before it starts."""

    def __init__(self, lead_time: Optional[timedelta] = None):
        self.lead_time = lead_time if lead_time is not None else settings.cancellation_lead_time

    def time_remaining(self, appointment, now: datetime, tz: tzinfo = timezone.utc) -> timedelta:
        starts_at = scheduled_datetime(appointment.appointment_date, appointment.appointment_time, tz)
        return starts_at - as_aware(now, tz)

    def permits(self, appointment, now: datetime, tz: tzinfo = timezone.utc) -> bool:
        if appointment.status not in ACTIVE_STATUSES:
            return False
        return self.time_remaining(appointment, now, tz) > self.lead_time
