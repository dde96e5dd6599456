from fastapi import APIRouter, Depends, Query
from datetime import date

from ...api.deps import get_current_actor, get_appointment_service
from ...core.security import Actor
from ...schemas.appointment import AvailableSlotsResponse
from ...schemas.availability import WeeklyAvailability
from ...services.appointment_service import AppointmentService

router = APIRouter(prefix="/doctors", tags=["Doctors"])

@router.get("/{doctor_id}/slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    doctor_id: int,
    day: date = Query(..., alias="date"),
    _: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Open slots for a doctor on a date. A point-in-time view, not a hold."""
    slots = service.get_available_slots(doctor_id, day)
    profile = service.get_doctor_profile(doctor_id)
    return AvailableSlotsResponse(
        doctor_id=doctor_id,
        day=day,
        available=profile.availability.for_date(day).is_available,
        available_slots=slots,
        consultation_fee=profile.consultation_fee,
    )

@router.get("/{doctor_id}/availability", response_model=WeeklyAvailability)
async def get_availability(
    doctor_id: int,
    _: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Get a doctor's weekly availability template."""
    return service.get_availability(doctor_id)

@router.put("/{doctor_id}/availability", response_model=WeeklyAvailability)
async def update_availability(
    doctor_id: int,
    availability: WeeklyAvailability,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Replace a doctor's weekly availability template."""
    return service.update_availability(actor, doctor_id, availability)
