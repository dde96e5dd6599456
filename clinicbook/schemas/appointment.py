from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.config import settings
from ..models.appointment import Appointment, AppointmentStatus, AppointmentType, PaymentStatus


class BookingDetails(BaseModel):
    """Patient-supplied details of a booking request."""
    duration: int = settings.DEFAULT_SLOT_DURATION
    type: AppointmentType = AppointmentType.CONSULTATION
    reason: str = Field(..., max_length=500)
    symptoms: List[str] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=1000)
    is_virtual: bool = False

    @field_validator("duration")
    @classmethod
    def _check_duration(cls, value: int) -> int:
        if not settings.MIN_APPOINTMENT_DURATION <= value <= settings.MAX_APPOINTMENT_DURATION:
            raise ValueError(
                f"Duration must be between {settings.MIN_APPOINTMENT_DURATION} "
                f"and {settings.MAX_APPOINTMENT_DURATION} minutes"
            )
        return value

    @field_validator("reason")
    @classmethod
    def _check_reason(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Reason for appointment is required")
        return value

    @field_validator("symptoms")
    @classmethod
    def _strip_symptoms(cls, value: List[str]) -> List[str]:
        return [s.strip() for s in value if s and s.strip()]


class AppointmentCreate(BookingDetails):
    doctor_id: int
    appointment_date: date
    appointment_time: str
    patient_id: Optional[int] = None  # admins book on behalf of a patient


class TransitionRequest(BaseModel):
    status: AppointmentStatus
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: str = Field(..., max_length=200)


class RescheduleRequest(BaseModel):
    appointment_date: date
    appointment_time: str


class ClinicalNotesUpdate(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)
    prescription: Optional[str] = Field(None, max_length=2000)
    meeting_link: Optional[str] = Field(None, max_length=500)


class PaymentUpdate(BaseModel):
    status: PaymentStatus
    payment_method: Optional[str] = Field(None, max_length=30)
    transaction_id: Optional[str] = Field(None, max_length=100)


class PaymentInfo(BaseModel):
    amount: float
    status: PaymentStatus
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: int
    appointment_date: date
    appointment_time: str
    duration: int
    type: AppointmentType
    status: AppointmentStatus
    reason: str
    symptoms: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    is_virtual: bool = False
    meeting_link: Optional[str] = None
    prescription: Optional[str] = None
    payment: PaymentInfo
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            appointment_date=appointment.appointment_date,
            appointment_time=appointment.appointment_time,
            duration=appointment.duration,
            type=appointment.type,
            status=appointment.status,
            reason=appointment.reason,
            symptoms=appointment.symptoms or [],
            notes=appointment.notes,
            is_virtual=bool(appointment.is_virtual),
            meeting_link=appointment.meeting_link,
            prescription=appointment.prescription,
            payment=PaymentInfo(
                amount=appointment.payment_amount,
                status=appointment.payment_status,
                payment_method=appointment.payment_method,
                transaction_id=appointment.transaction_id,
                paid_at=appointment.paid_at,
            ),
            cancellation_reason=appointment.cancellation_reason,
            cancelled_by=appointment.cancelled_by,
            cancelled_at=appointment.cancelled_at,
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_appointments: int
    has_next: bool
    has_prev: bool


class AppointmentListResponse(BaseModel):
    appointments: List[AppointmentResponse]
    pagination: Pagination


class AvailableSlotsResponse(BaseModel):
    doctor_id: int
    day: date
    available: bool
    available_slots: List[str]
    consultation_fee: float


class ReminderDispatchResponse(BaseModel):
    reminders_sent: int
