"""
Scheduling error taxonomy.

Every error raised by the booking core derives from ``SchedulingError`` and
carries the HTTP status it maps to, so the API layer translates them with a
single exception handler.
"""
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import status


class SchedulingError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    @property
    def error(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message, **self.extra}


class ValidationError(SchedulingError):
    """Malformed or out-of-window input the client can correct."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictReason(str, Enum):
    PROVIDER_SLOT_TAKEN = "provider_slot_taken"
    PATIENT_DOUBLE_BOOKED = "patient_double_booked"


class SlotConflict(SchedulingError):
    """An active appointment already holds the requested key.

    Clients should re-query available slots rather than resend the request.
    """
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, reason: ConflictReason, message: Optional[str] = None):
        if message is None:
            if reason == ConflictReason.PROVIDER_SLOT_TAKEN:
                message = "This time slot is already booked. Please choose a different time."
            else:
                message = "You already have an appointment scheduled at this time."
        super().__init__(message, reason=reason.value)
        self.reason = reason


class InvalidTransition(SchedulingError):
    status_code = status.HTTP_409_CONFLICT


class ActorNotPermitted(InvalidTransition):
    """The actor's role or ownership does not allow the requested action."""
    status_code = status.HTTP_403_FORBIDDEN


class ConcurrentModification(InvalidTransition):
    """Another request changed the appointment first."""
    status_code = status.HTTP_409_CONFLICT


class PolicyViolation(SchedulingError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
