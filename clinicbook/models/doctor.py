from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, Float, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    auth_user_id = Column(Integer, unique=True, nullable=True)

    # Profile
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    specialization = Column(String(100), nullable=False)
    license_number = Column(String(50), nullable=False, unique=True)
    bio = Column(Text, nullable=True)

    # Practice
    consultation_fee = Column(Float, nullable=False, default=0.0)
    is_verified = Column(Boolean, default=False)
    is_accepting_new_patients = Column(Boolean, default=True)
    timezone = Column(String(64), nullable=True)  # IANA name; falls back to DEFAULT_TIMEZONE

    # Weekly availability, stored as one WeeklyAvailability document
    availability = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    appointments = relationship("Appointment", back_populates="doctor")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Doctor(id={self.id}, name='{self.full_name}', verified={self.is_verified})>"
