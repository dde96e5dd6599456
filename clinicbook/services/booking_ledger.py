"""
Booking ledger: the single authority on who holds which slot.

``reserve`` never reads the slot before it writes. The existence check for both
keys, ``(doctor_id, date, time)`` and ``(patient_id, date, time)``, and the
creation of the appointment are one INSERT guarded by partial unique indexes
over the active statuses, so the database decides concurrent races across
processes. ``move`` relocates a booking with one UPDATE under the same indexes.
``available_slots`` is an advisory read and may be served from the cache.
"""
from datetime import date, datetime, timezone
from typing import List, Optional, Union
import logging

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.exceptions import (
    ConcurrentModification, ConflictReason, NotFoundError, SlotConflict, ValidationError
)
from ..models.appointment import (
    ACTIVE_STATUSES, PATIENT_SLOT_INDEX, PROVIDER_SLOT_INDEX,
    Appointment, AppointmentStatus, PaymentStatus
)
from ..models.patient import Patient
from ..schemas.appointment import BookingDetails
from ..schemas.availability import normalize_time
from .availability_cache import AvailabilityCache
from .cancellation_policy import as_aware, scheduled_datetime
from .provider_directory import ProviderDirectory, ProviderProfile
from .slot_generator import slots_for_date

logger = logging.getLogger(__name__)

PG_UNIQUE_VIOLATION = "23505"


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    # psycopg2 exposes pgcode, psycopg 3 sqlstate
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code is not None:
        return code == PG_UNIQUE_VIOLATION
    return "UNIQUE constraint failed" in str(orig if orig is not None else exc)


def conflict_reason(exc: IntegrityError) -> Optional[ConflictReason]:
    """Map a unique-index violation to the key that was already taken.

    Any other integrity failure (foreign key, not null) is not a slot conflict.
    """
    if not _is_unique_violation(exc):
        return None

    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None) or ""
    message = constraint or str(orig if orig is not None else exc)

    # PostgreSQL names the index; SQLite lists the indexed columns
    if PROVIDER_SLOT_INDEX in message or "appointments.doctor_id" in message:
        return ConflictReason.PROVIDER_SLOT_TAKEN
    if PATIENT_SLOT_INDEX in message or "appointments.patient_id" in message:
        return ConflictReason.PATIENT_DOUBLE_BOOKED
    return None


class BookingLedger:
    def __init__(
        self,
        db: Session,
        directory: ProviderDirectory,
        cache: Optional[AvailabilityCache] = None,
    ):
        self.db = db
        self.directory = directory
        self.cache = cache or AvailabilityCache(None)

    def booked_times(self, doctor_id: int, on_date: date) -> List[str]:
        rows = self.db.query(Appointment.appointment_time).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == on_date,
            Appointment.status.in_(ACTIVE_STATUSES)
        ).all()
        return [row[0] for row in rows]

    def available_slots(self, doctor_id: int, on_date: date) -> List[str]:
        """Template slots for the day minus active bookings. Advisory only."""
        profile = self.directory.get_profile(doctor_id)

        cached = self.cache.get(doctor_id, on_date)
        if cached is not None:
            return cached

        booked = set(self.booked_times(doctor_id, on_date))
        slots = [t for t in slots_for_date(profile.availability, on_date) if t not in booked]
        self.cache.set(doctor_id, on_date, slots)
        return slots

    def reserve(
        self,
        doctor_id: int,
        patient_id: int,
        on_date: date,
        appointment_time: str,
        details: Union[BookingDetails, dict],
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Atomically book the slot or raise ``SlotConflict``/``ValidationError``."""
        details = self._validate_details(details)
        profile = self.directory.get_profile(doctor_id)

        if not profile.is_verified:
            raise ValidationError("Doctor is not yet verified. Please select a different doctor.")
        if not profile.is_accepting_new_patients:
            raise ValidationError(f"Dr. {profile.name} is currently not accepting new patients.")
        if self.db.query(Patient.id).filter(Patient.id == patient_id).first() is None:
            raise NotFoundError("Patient not found", patient_id=patient_id)

        slot_time = self._check_slot(profile, on_date, appointment_time, now)

        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_date=on_date,
            appointment_time=slot_time,
            duration=details.duration,
            type=details.type,
            status=AppointmentStatus.SCHEDULED,
            reason=details.reason,
            symptoms=details.symptoms,
            notes=details.notes,
            is_virtual=details.is_virtual,
            payment_amount=profile.consultation_fee,
            payment_status=PaymentStatus.PENDING,
        )

        self.db.add(appointment)
        self._commit_slot(doctor_id, patient_id, on_date, slot_time)

        self.db.refresh(appointment)
        self.cache.invalidate(doctor_id, on_date)
        logger.info(
            f"Appointment {appointment.id} booked: doctor {doctor_id}, patient {patient_id}, "
            f"{on_date} {slot_time}"
        )
        return appointment

    def move(
        self,
        appointment: Appointment,
        on_date: date,
        appointment_time: str,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Relocate an active booking to another slot of the same doctor.

        The new slot is claimed by the UPDATE itself; a clash raises
        ``SlotConflict`` and leaves the booking where it was.
        """
        profile = self.directory.get_profile(appointment.doctor_id)
        slot_time = self._check_slot(profile, on_date, appointment_time, now)
        if appointment.appointment_date == on_date and appointment.appointment_time == slot_time:
            raise ValidationError("Appointment is already booked for that time")

        previous_date = appointment.appointment_date
        appointment.appointment_date = on_date
        appointment.appointment_time = slot_time
        appointment.reminder_sent_at = None
        self._commit_slot(appointment.doctor_id, appointment.patient_id, on_date, slot_time)

        self.db.refresh(appointment)
        self.cache.invalidate(appointment.doctor_id, previous_date)
        self.cache.invalidate(appointment.doctor_id, on_date)
        logger.info(f"Appointment {appointment.id} moved to {on_date} {slot_time}")
        return appointment

    def release(self, appointment: Appointment) -> None:
        """Forget cached availability after a slot has been freed."""
        self.cache.invalidate(appointment.doctor_id, appointment.appointment_date)

    def _check_slot(
        self,
        profile: ProviderProfile,
        on_date: date,
        appointment_time: str,
        now: Optional[datetime],
    ) -> str:
        """Normalise ``appointment_time`` and make sure it is a future grid slot."""
        try:
            slot_time = normalize_time(appointment_time)
        except ValueError:
            raise ValidationError("Invalid appointment time format, expected HH:MM")

        tz = profile.tz
        current = as_aware(now or datetime.now(timezone.utc), tz).astimezone(tz)
        if on_date < current.date():
            raise ValidationError("Appointment date cannot be in the past")
        if scheduled_datetime(on_date, slot_time, tz) <= current:
            raise ValidationError("Appointment time has already passed")

        if slot_time not in slots_for_date(profile.availability, on_date):
            raise ValidationError(
                f"{slot_time} is not a bookable time for Dr. {profile.name} on {on_date.isoformat()}"
            )
        return slot_time

    def _commit_slot(self, doctor_id: int, patient_id: int, on_date: date, slot_time: str) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            reason = conflict_reason(exc)
            if reason is None:
                raise
            logger.info(
                f"Slot conflict ({reason.value}) for doctor {doctor_id} "
                f"patient {patient_id} at {on_date} {slot_time}"
            )
            raise SlotConflict(reason) from exc
        except StaleDataError as exc:
            self.db.rollback()
            raise ConcurrentModification(
                "Appointment was modified by another request. Please reload and try again."
            ) from exc

    @staticmethod
    def _validate_details(details: Union[BookingDetails, dict]) -> BookingDetails:
        if isinstance(details, BookingDetails):
            return details
        try:
            return BookingDetails.model_validate(details)
        except SchemaValidationError as e:
            raise ValidationError("Invalid booking details", errors=[err["msg"] for err in e.errors()])
