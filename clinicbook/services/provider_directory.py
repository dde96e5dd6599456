from dataclasses import dataclass
from datetime import timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import NotFoundError
from ..models.doctor import Doctor
from ..schemas.availability import WeeklyAvailability

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class ProviderProfile:
    """Read-only view of a doctor as the booking core needs it."""
    id: int
    name: str
    specialization: str
    availability: WeeklyAvailability
    is_verified: bool
    is_accepting_new_patients: bool
    consultation_fee: float
    timezone_name: str

    @property
    def tz(self) -> tzinfo:
        return load_timezone(self.timezone_name)


def load_timezone(name: Optional[str]) -> tzinfo:
    name = name or settings.DEFAULT_TIMEZONE
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, using UTC")
        return timezone.utc


class ProviderDirectory:
    """Doctor lookups consumed by the scheduling core."""

    def get_profile(self, doctor_id: int) -> ProviderProfile:
        raise NotImplementedError

    def update_availability(self, doctor_id: int, availability: WeeklyAvailability) -> ProviderProfile:
        raise NotImplementedError

    def get_availability_template(self, doctor_id: int) -> WeeklyAvailability:
        return self.get_profile(doctor_id).availability

    def is_verified(self, doctor_id: int) -> bool:
        return self.get_profile(doctor_id).is_verified

    def is_accepting_new_patients(self, doctor_id: int) -> bool:
        return self.get_profile(doctor_id).is_accepting_new_patients

    def consultation_fee(self, doctor_id: int) -> float:
        return self.get_profile(doctor_id).consultation_fee

    def timezone(self, doctor_id: int) -> tzinfo:
        return self.get_profile(doctor_id).tz


class SqlProviderDirectory(ProviderDirectory):
    """Directory backed by the ``doctors`` table."""

    def __init__(self, db: Session):
        self.db = db

    def _get_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if not doctor:
            raise NotFoundError("Doctor not found", doctor_id=doctor_id)
        return doctor

    def get_profile(self, doctor_id: int) -> ProviderProfile:
        return self._to_profile(self._get_doctor(doctor_id))

    def update_availability(self, doctor_id: int, availability: WeeklyAvailability) -> ProviderProfile:
        doctor = self._get_doctor(doctor_id)
        doctor.availability = availability.model_dump()
        self.db.commit()
        self.db.refresh(doctor)
        return self._to_profile(doctor)

    @staticmethod
    def _to_profile(doctor: Doctor) -> ProviderProfile:
        availability = WeeklyAvailability.model_validate(doctor.availability or {})
        return ProviderProfile(
            id=doctor.id,
            name=doctor.full_name,
            specialization=doctor.specialization,
            availability=availability,
            is_verified=bool(doctor.is_verified),
            is_accepting_new_patients=bool(doctor.is_accepting_new_patients),
            consultation_fee=float(doctor.consultation_fee or 0.0),
            timezone_name=doctor.timezone or settings.DEFAULT_TIMEZONE,
        )
