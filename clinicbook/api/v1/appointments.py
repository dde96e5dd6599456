from fastapi import APIRouter, Depends, Query, status
from datetime import date
from typing import Optional
import math

from ...api.deps import get_current_actor, get_admin_actor, get_appointment_service
from ...core.security import Actor
from ...models.appointment import AppointmentStatus, AppointmentType
from ...schemas.appointment import (
    AppointmentCreate, AppointmentResponse, AppointmentListResponse, BookingDetails,
    CancelRequest, ClinicalNotesUpdate, Pagination, PaymentUpdate, ReminderDispatchResponse,
    RescheduleRequest, TransitionRequest
)
from ...services.appointment_service import AppointmentService

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    booking: AppointmentCreate,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Book a slot. Conflicts return 409 and the client should re-query slots."""
    details = BookingDetails.model_validate(booking.model_dump(include=set(BookingDetails.model_fields)))
    appointment = service.book_appointment(
        actor,
        doctor_id=booking.doctor_id,
        patient_id=booking.patient_id,
        on_date=booking.appointment_date,
        appointment_time=booking.appointment_time,
        details=details,
    )
    return AppointmentResponse.from_appointment(appointment)

@router.get("", response_model=AppointmentListResponse)
async def list_appointments(
    status: Optional[AppointmentStatus] = None,
    type: Optional[AppointmentType] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """List the caller's appointments (all appointments for admins)."""
    appointments, total = service.list_appointments(
        actor, status=status, type=type, start_date=start_date,
        end_date=end_date, page=page, limit=limit
    )
    total_pages = math.ceil(total / limit) if total else 0
    return AppointmentListResponse(
        appointments=[AppointmentResponse.from_appointment(a) for a in appointments],
        pagination=Pagination(
            current_page=page,
            total_pages=total_pages,
            total_appointments=total,
            has_next=page < total_pages,
            has_prev=page > 1,
        )
    )

@router.post("/reminders/dispatch", response_model=ReminderDispatchResponse)
async def dispatch_reminders(
    _: Actor = Depends(get_admin_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Send reminders for appointments starting soon (admin only)."""
    return ReminderDispatchResponse(reminders_sent=service.dispatch_due_reminders())

@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Get appointment by ID."""
    return AppointmentResponse.from_appointment(service.get_appointment(actor, appointment_id))

@router.post("/{appointment_id}/transitions", response_model=AppointmentResponse)
async def transition_appointment(
    appointment_id: int,
    transition: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Move an appointment to a new status."""
    appointment = service.transition_appointment(
        appointment_id, actor, transition.status, reason=transition.reason
    )
    return AppointmentResponse.from_appointment(appointment)

@router.put("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    cancel: CancelRequest,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Cancel an appointment."""
    appointment = service.cancel_appointment(appointment_id, actor, cancel.reason)
    return AppointmentResponse.from_appointment(appointment)

@router.put("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: int,
    reschedule: RescheduleRequest,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Move an appointment to another slot with the same doctor."""
    appointment = service.reschedule_appointment(
        appointment_id, actor, reschedule.appointment_date, reschedule.appointment_time
    )
    return AppointmentResponse.from_appointment(appointment)

@router.put("/{appointment_id}/clinical-notes", response_model=AppointmentResponse)
async def update_clinical_notes(
    appointment_id: int,
    update: ClinicalNotesUpdate,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Doctor's notes, prescription and meeting link."""
    appointment = service.update_clinical_notes(
        appointment_id, actor,
        notes=update.notes,
        prescription=update.prescription,
        meeting_link=update.meeting_link,
    )
    return AppointmentResponse.from_appointment(appointment)

@router.post("/{appointment_id}/payment", response_model=AppointmentResponse)
async def record_payment(
    appointment_id: int,
    payment: PaymentUpdate,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Record the payment gateway's result for an appointment."""
    appointment = service.record_payment(
        appointment_id, actor, payment.status,
        payment_method=payment.payment_method,
        transaction_id=payment.transaction_id,
    )
    return AppointmentResponse.from_appointment(appointment)
