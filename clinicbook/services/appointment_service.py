from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, List, Optional, Tuple, Union
import logging

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.config import settings
from ..core.exceptions import (
    ActorNotPermitted, ConcurrentModification, InvalidTransition, NotFoundError,
    PolicyViolation, SchedulingError, ValidationError
)
from ..core.security import Actor, UserRole
from ..models.appointment import (
    ACTIVE_STATUSES, Appointment, AppointmentStatus, AppointmentType, PaymentStatus
)
from ..schemas.appointment import AppointmentResponse, BookingDetails
from ..schemas.availability import WeeklyAvailability
from .availability_cache import AvailabilityCache
from .booking_ledger import BookingLedger
from .cancellation_policy import CancellationPolicy, as_aware, scheduled_datetime
from .notification_service import (
    LoggingNotificationDispatcher, NotificationDispatcher, NotificationEvent
)
from .provider_directory import ProviderDirectory, ProviderProfile, SqlProviderDirectory
from .state_machine import AppointmentStateMachine, is_party_to

logger = logging.getLogger(__name__)

TRANSITION_EVENTS = {
    AppointmentStatus.CONFIRMED: NotificationEvent.CONFIRMED,
    AppointmentStatus.IN_PROGRESS: NotificationEvent.IN_PROGRESS,
    AppointmentStatus.COMPLETED: NotificationEvent.COMPLETED,
    AppointmentStatus.CANCELLED: NotificationEvent.CANCELLED,
    AppointmentStatus.NO_SHOW: NotificationEvent.NO_SHOW,
}

class AppointmentService:
    def __init__(
        self,
        db: Session,
        directory: Optional[ProviderDirectory] = None,
        cache: Optional[AvailabilityCache] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        policy: Optional[CancellationPolicy] = None,
    ):
        self.db = db
        self.directory = directory or SqlProviderDirectory(db)
        self.cache = cache or AvailabilityCache(None)
        self.ledger = BookingLedger(db, self.directory, self.cache)
        self.state_machine = AppointmentStateMachine(policy or CancellationPolicy())
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()

    # Availability

    def get_available_slots(self, doctor_id: int, on_date: date) -> List[str]:
        """Advisory list of open slots; ``book_appointment`` has the final word."""
        return self.ledger.available_slots(doctor_id, on_date)

    def get_doctor_profile(self, doctor_id: int) -> ProviderProfile:
        return self.directory.get_profile(doctor_id)

    def get_availability(self, doctor_id: int) -> WeeklyAvailability:
        return self.directory.get_availability_template(doctor_id)

    def update_availability(
        self,
        actor: Actor,
        doctor_id: int,
        availability: Union[WeeklyAvailability, dict],
    ) -> WeeklyAvailability:
        """Replace a doctor's weekly template (the doctor or an admin)."""
        if not (actor.is_admin or actor.owns_doctor_record(doctor_id)):
            raise ActorNotPermitted("Only the doctor or an admin can change this availability")
        if not isinstance(availability, WeeklyAvailability):
            try:
                availability = WeeklyAvailability.model_validate(availability)
            except SchemaValidationError as e:
                raise ValidationError("Invalid availability", errors=[err["msg"] for err in e.errors()])

        profile = self.directory.update_availability(doctor_id, availability)
        self.cache.invalidate_doctor(doctor_id)
        logger.info(f"Availability updated for doctor {doctor_id} by {actor.role.value} {actor.user_id}")
        return profile.availability

    # Booking

    def book_appointment(
        self,
        actor: Actor,
        doctor_id: int,
        patient_id: Optional[int],
        on_date: date,
        appointment_time: str,
        details: Union[BookingDetails, dict],
        now: Optional[datetime] = None,
    ) -> Appointment:
        if actor.role == UserRole.PATIENT:
            if actor.profile_id is None:
                raise ActorNotPermitted("Patient profile not found")
            if patient_id is None:
                patient_id = actor.profile_id
            if patient_id != actor.profile_id:
                raise ActorNotPermitted("Patients can only book appointments for themselves")
        elif actor.is_admin:
            if patient_id is None:
                raise ValidationError("patient_id is required when booking on behalf of a patient")
        else:
            raise ActorNotPermitted("Only patients or admins can book appointments")

        appointment = self.ledger.reserve(doctor_id, patient_id, on_date, appointment_time, details, now=now)
        self._notify(NotificationEvent.BOOKING_CREATED, appointment)
        return appointment

    # Lookup

    def get_appointment(self, actor: Actor, appointment_id: int) -> Appointment:
        appointment = self._load(appointment_id)
        if not is_party_to(actor, appointment):
            raise ActorNotPermitted("Access denied")
        return appointment

    def list_appointments(
        self,
        actor: Actor,
        status: Optional[AppointmentStatus] = None,
        type: Optional[AppointmentType] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Appointment], int]:
        """Appointments visible to ``actor``, newest first, with the total count."""
        query = self.db.query(Appointment)

        if actor.role == UserRole.PATIENT:
            query = query.filter(Appointment.patient_id == actor.profile_id)
        elif actor.role == UserRole.DOCTOR:
            query = query.filter(Appointment.doctor_id == actor.profile_id)

        if status:
            query = query.filter(Appointment.status == status)
        if type:
            query = query.filter(Appointment.type == type)
        if start_date:
            query = query.filter(Appointment.appointment_date >= start_date)
        if end_date:
            query = query.filter(Appointment.appointment_date <= end_date)

        total = query.count()
        appointments = query.order_by(
            Appointment.appointment_date.desc(),
            Appointment.appointment_time.desc()
        ).offset((page - 1) * limit).limit(limit).all()
        return appointments, total

    # Lifecycle

    def transition_appointment(
        self,
        appointment_id: int,
        actor: Actor,
        target_status: AppointmentStatus,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Appointment:
        appointment = self._load(appointment_id)
        tz = self.directory.timezone(appointment.doctor_id)
        now = now or datetime.now(timezone.utc)

        self.state_machine.apply(appointment, actor, target_status, now, tz, reason)
        self._commit(appointment)

        if target_status == AppointmentStatus.CANCELLED:
            self.ledger.release(appointment)
        self._notify(TRANSITION_EVENTS[target_status], appointment)
        return appointment

    def cancel_appointment(
        self,
        appointment_id: int,
        actor: Actor,
        reason: str,
        now: Optional[datetime] = None,
    ) -> Appointment:
        return self.transition_appointment(
            appointment_id, actor, AppointmentStatus.CANCELLED, reason=reason, now=now
        )

    def reschedule_appointment(
        self,
        appointment_id: int,
        actor: Actor,
        on_date: date,
        appointment_time: str,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Move an active appointment to another slot with the same doctor.

        Only the patient or an admin may move it, and only while it could
        still be cancelled.
        """
        appointment = self._load(appointment_id)
        if not (actor.is_admin or actor.owns_patient_record(appointment.patient_id)):
            raise ActorNotPermitted("Only the patient or an admin can reschedule this appointment")
        if not appointment.is_active:
            current = AppointmentStatus(appointment.status)
            raise InvalidTransition(
                f"Cannot reschedule a {current.value} appointment",
                current_status=current.value,
            )

        tz = self.directory.timezone(appointment.doctor_id)
        now = as_aware(now or datetime.now(timezone.utc), tz)
        policy = self.state_machine.policy
        if not policy.permits(appointment, now, tz):
            lead_hours = policy.lead_time.total_seconds() / 3600
            raise PolicyViolation(
                f"Appointments can only be rescheduled more than {lead_hours:g} hours in advance",
                lead_time_hours=lead_hours,
            )

        self.ledger.move(appointment, on_date, appointment_time, now=now)
        logger.info(f"Appointment {appointment.id} rescheduled by {actor.role.value} {actor.user_id}")
        self._notify(NotificationEvent.RESCHEDULED, appointment)
        return appointment

    def update_clinical_notes(
        self,
        appointment_id: int,
        actor: Actor,
        notes: Optional[str] = None,
        prescription: Optional[str] = None,
        meeting_link: Optional[str] = None,
    ) -> Appointment:
        """Doctor-side fields; ``None`` leaves a field unchanged."""
        appointment = self._load(appointment_id)
        if not (actor.is_admin or actor.owns_doctor_record(appointment.doctor_id)):
            raise ActorNotPermitted("Only the doctor or an admin can update clinical notes")

        if notes is not None:
            appointment.notes = notes
        if prescription is not None:
            appointment.prescription = prescription
        if meeting_link is not None:
            appointment.meeting_link = meeting_link
        self._commit(appointment)
        return appointment

    def record_payment(
        self,
        appointment_id: int,
        actor: Actor,
        payment_status: PaymentStatus,
        payment_method: Optional[str] = None,
        transaction_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Apply a payment gateway result; a successful payment confirms the appointment."""
        appointment = self._load(appointment_id)
        if not (actor.is_admin or actor.owns_patient_record(appointment.patient_id)):
            raise ActorNotPermitted("Access denied")

        now = now or datetime.now(timezone.utc)
        events: List[NotificationEvent] = []
        try:
            if payment_status == PaymentStatus.PAID:
                self._check_payable(appointment)
                appointment.payment_status = PaymentStatus.PAID
                appointment.payment_method = payment_method
                appointment.transaction_id = transaction_id
                appointment.paid_at = now
                events.append(NotificationEvent.PAYMENT_SUCCESS)
                if appointment.status == AppointmentStatus.SCHEDULED:
                    tz = self.directory.timezone(appointment.doctor_id)
                    self.state_machine.apply(appointment, actor, AppointmentStatus.CONFIRMED, now, tz)
                    events.append(NotificationEvent.CONFIRMED)
            elif payment_status == PaymentStatus.FAILED:
                self._check_payable(appointment)
                appointment.payment_status = PaymentStatus.FAILED
                appointment.payment_method = payment_method
                appointment.transaction_id = transaction_id
            elif payment_status == PaymentStatus.REFUNDED:
                if (appointment.payment_status != PaymentStatus.PAID
                        or appointment.status != AppointmentStatus.CANCELLED):
                    raise InvalidTransition("Only paid appointments that were cancelled can be refunded")
                appointment.payment_status = PaymentStatus.REFUNDED
            else:
                raise ValidationError("Payment status cannot be reset to pending")
        except SchedulingError:
            self.db.rollback()
            raise

        self._commit(appointment)
        logger.info(f"Payment for appointment {appointment.id} recorded as {payment_status.value}")
        for event in events:
            self._notify(event, appointment)
        return appointment

    def dispatch_due_reminders(self, now: Optional[datetime] = None) -> int:
        """Stamp and announce reminders for active appointments starting soon."""
        now = as_aware(now or datetime.now(timezone.utc), timezone.utc)
        horizon = now + timedelta(hours=settings.REMINDER_LEAD_HOURS)

        # Dates are widened by a day to cover doctors in other timezones
        candidates = self.db.query(Appointment).filter(
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.reminder_sent_at.is_(None),
            Appointment.appointment_date >= (now - timedelta(days=1)).date(),
            Appointment.appointment_date <= (horizon + timedelta(days=1)).date()
        ).all()

        timezones: Dict[int, tzinfo] = {}
        due = []
        for appointment in candidates:
            if appointment.doctor_id not in timezones:
                timezones[appointment.doctor_id] = self.directory.timezone(appointment.doctor_id)
            starts_at = scheduled_datetime(
                appointment.appointment_date, appointment.appointment_time,
                timezones[appointment.doctor_id]
            )
            if now < starts_at <= horizon:
                due.append(appointment)

        sent = 0
        for appointment in due:
            appointment.reminder_sent_at = now
            try:
                self._commit(appointment)
            except ConcurrentModification:
                logger.info(f"Skipping reminder for appointment {appointment.id}: changed concurrently")
                continue
            self._notify(NotificationEvent.REMINDER, appointment)
            sent += 1

        logger.info(f"Dispatched {sent} appointment reminders")
        return sent

    # Helpers

    def _load(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise NotFoundError("Appointment not found", appointment_id=appointment_id)
        return appointment

    @staticmethod
    def _check_payable(appointment: Appointment) -> None:
        if appointment.payment_status == PaymentStatus.PAID:
            raise ValidationError("Appointment is already paid")
        if not appointment.is_active:
            raise InvalidTransition(
                f"Cannot record a payment for a {AppointmentStatus(appointment.status).value} appointment"
            )

    def _commit(self, appointment: Appointment) -> None:
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            raise ConcurrentModification(
                "Appointment was modified by another request. Please reload and try again."
            ) from exc
        self.db.refresh(appointment)

    def _notify(self, event: NotificationEvent, appointment: Appointment) -> None:
        try:
            self.dispatcher.notify(event, AppointmentResponse.from_appointment(appointment))
        except Exception as e:
            logger.warning(f"Notification {event.value} for appointment {appointment.id} failed: {str(e)}")
