from sqlalchemy import (
    Column, Integer, String, ForeignKey, Date, DateTime, Boolean, Text, Float, JSON, Index,
    Enum as SQLEnum, text
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"

class AppointmentType(str, enum.Enum):
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow-up"
    EMERGENCY = "emergency"
    ROUTINE = "routine"

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"

# Statuses that occupy a slot
ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)
TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
)

PROVIDER_SLOT_INDEX = "uq_appointments_active_doctor_slot"
PATIENT_SLOT_INDEX = "uq_appointments_active_patient_slot"

_ACTIVE_CLAUSE = "status IN ({})".format(
    ", ".join(f"'{s.value}'" for s in ACTIVE_STATUSES)
)

def _enum_column(enum_cls):
    # Persist the values ("in-progress"), not the member names, so the
    # partial index predicate can match them
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )

class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)

    # Slot
    appointment_date = Column(Date, nullable=False, index=True)
    appointment_time = Column(String(5), nullable=False)  # HH:MM
    duration = Column(Integer, nullable=False, default=30)

    # Appointment details
    type = Column(_enum_column(AppointmentType), nullable=False, default=AppointmentType.CONSULTATION)
    status = Column(_enum_column(AppointmentStatus), nullable=False, default=AppointmentStatus.SCHEDULED)
    reason = Column(Text, nullable=False)
    symptoms = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)
    is_virtual = Column(Boolean, default=False)
    meeting_link = Column(String(500), nullable=True)

    # Written by the doctor
    prescription = Column(Text, nullable=True)

    # Payment
    payment_amount = Column(Float, nullable=False)
    payment_status = Column(_enum_column(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    payment_method = Column(String(30), nullable=True)
    transaction_id = Column(String(100), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Cancellation
    cancellation_reason = Column(String(200), nullable=True)
    cancelled_by = Column(Integer, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    version_id = Column(Integer, nullable=False)

    # Relationships
    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        # One active appointment per doctor slot and per patient slot
        Index(
            PROVIDER_SLOT_INDEX,
            "doctor_id", "appointment_date", "appointment_time",
            unique=True,
            postgresql_where=text(_ACTIVE_CLAUSE),
            sqlite_where=text(_ACTIVE_CLAUSE),
        ),
        Index(
            PATIENT_SLOT_INDEX,
            "patient_id", "appointment_date", "appointment_time",
            unique=True,
            postgresql_where=text(_ACTIVE_CLAUSE),
            sqlite_where=text(_ACTIVE_CLAUSE),
        ),
        Index("ix_appointments_doctor_date", "doctor_id", "appointment_date"),
        Index("ix_appointments_patient_date", "patient_id", "appointment_date"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, "
            f"date='{self.appointment_date}', time='{self.appointment_time}', status='{self.status}')>"
        )
