"""
Appointment lifecycle.

All status changes go through ``AppointmentStateMachine.apply``. The
transition table below is the only place that decides which actor may move an
appointment from which status to which; route handlers pass the actor in and
never re-check roles themselves.
"""
from dataclasses import dataclass
from datetime import datetime, tzinfo, timezone
import logging
from typing import Callable, Dict, FrozenSet, List, Optional

from ..core.exceptions import (
    ActorNotPermitted, InvalidTransition, PolicyViolation, ValidationError
)
from ..core.security import Actor, UserRole
from ..models.appointment import Appointment, AppointmentStatus, PaymentStatus
from .cancellation_policy import CancellationPolicy, as_aware, scheduled_datetime

logger = logging.getLogger(__name__)

S = AppointmentStatus

MAX_CANCELLATION_REASON_LENGTH = 200


@dataclass(frozen=True)
class TransitionContext:
    appointment: Appointment
    actor: Actor
    now: datetime
    tz: tzinfo
    reason: Optional[str]

    @property
    def starts_at(self) -> datetime:
        return scheduled_datetime(self.appointment.appointment_date, self.appointment.appointment_time, self.tz)


@dataclass(frozen=True)
class TransitionRule:
    sources: FrozenSet[AppointmentStatus]
    roles: FrozenSet[UserRole]
    guard: Optional[Callable[["AppointmentStateMachine", TransitionContext], None]] = None


def _require_payment(machine, ctx: TransitionContext) -> None:
    if ctx.appointment.payment_status != PaymentStatus.PAID:
        raise InvalidTransition("Appointment can only be confirmed once payment is completed")


def _require_started(machine, ctx: TransitionContext) -> None:
    if ctx.now < ctx.starts_at:
        raise InvalidTransition("Appointment cannot start before its scheduled time")


def _require_missed(machine, ctx: TransitionContext) -> None:
    if ctx.now <= ctx.starts_at:
        raise InvalidTransition("A no-show can only be recorded after the scheduled time")


def _require_cancellable(machine, ctx: TransitionContext) -> None:
    if not ctx.reason or not ctx.reason.strip():
        raise ValidationError("A cancellation reason is required")
    if len(ctx.reason.strip()) > MAX_CANCELLATION_REASON_LENGTH:
        raise ValidationError(
            f"Cancellation reason cannot exceed {MAX_CANCELLATION_REASON_LENGTH} characters"
        )
    if not machine.policy.permits(ctx.appointment, ctx.now, ctx.tz):
        lead_hours = machine.policy.lead_time.total_seconds() / 3600
        raise PolicyViolation(
            f"Appointments can only be cancelled more than {lead_hours:g} hours in advance",
            lead_time_hours=lead_hours,
        )


TRANSITIONS: Dict[AppointmentStatus, TransitionRule] = {
    S.CONFIRMED: TransitionRule(
        sources=frozenset({S.SCHEDULED}),
        roles=frozenset({UserRole.PATIENT, UserRole.ADMIN}),
        guard=_require_payment,
    ),
    S.IN_PROGRESS: TransitionRule(
        sources=frozenset({S.SCHEDULED, S.CONFIRMED}),
        roles=frozenset({UserRole.DOCTOR, UserRole.ADMIN}),
        guard=_require_started,
    ),
    S.COMPLETED: TransitionRule(
        sources=frozenset({S.IN_PROGRESS}),
        roles=frozenset({UserRole.DOCTOR, UserRole.ADMIN}),
    ),
    S.CANCELLED: TransitionRule(
        sources=frozenset({S.SCHEDULED, S.CONFIRMED}),
        roles=frozenset({UserRole.PATIENT, UserRole.DOCTOR, UserRole.ADMIN}),
        guard=_require_cancellable,
    ),
    S.NO_SHOW: TransitionRule(
        sources=frozenset({S.SCHEDULED, S.CONFIRMED}),
        roles=frozenset({UserRole.DOCTOR, UserRole.ADMIN}),
        guard=_require_missed,
    ),
}


def is_party_to(actor: Actor, appointment: Appointment) -> bool:
    """Whether ``actor`` may act on ``appointment`` at all."""
    return (
        actor.is_admin
        or actor.owns_patient_record(appointment.patient_id)
        or actor.owns_doctor_record(appointment.doctor_id)
    )


class AppointmentStateMachine:
    def __init__(self, policy: Optional[CancellationPolicy] = None):
        self.policy = policy or CancellationPolicy()

    def check(
        self,
        appointment: Appointment,
        actor: Actor,
        target: AppointmentStatus,
        now: datetime,
        tz: tzinfo = timezone.utc,
        reason: Optional[str] = None,
    ) -> None:
        """Raise if ``actor`` may not move ``appointment`` to ``target`` at ``now``."""
        current = AppointmentStatus(appointment.status)
        if appointment.is_terminal:
            raise InvalidTransition(
                f"Appointment is already {current.value} and can no longer change",
                current_status=current.value,
            )

        rule = TRANSITIONS.get(target)
        if rule is None or current not in rule.sources:
            raise InvalidTransition(
                f"Cannot move appointment from {current.value} to {target.value}",
                current_status=current.value,
            )

        if actor.role not in rule.roles:
            raise ActorNotPermitted(
                f"A {actor.role.value} cannot mark an appointment as {target.value}"
            )
        if not is_party_to(actor, appointment):
            raise ActorNotPermitted("Access denied")

        if rule.guard is not None:
            ctx = TransitionContext(appointment, actor, as_aware(now, tz), tz, reason)
            rule.guard(self, ctx)

    def apply(
        self,
        appointment: Appointment,
        actor: Actor,
        target: AppointmentStatus,
        now: datetime,
        tz: tzinfo = timezone.utc,
        reason: Optional[str] = None,
    ) -> Appointment:
        """Validate and perform the transition on ``appointment`` in place.

        The caller commits; the appointment's version column makes a
        concurrent commit of another transition fail.
        """
        self.check(appointment, actor, target, now, tz, reason)
        previous = appointment.status
        appointment.status = target
        if target == S.CANCELLED:
            record_cancellation(appointment, actor, as_aware(now, tz), reason)

        logger.info(
            f"Appointment {appointment.id}: {AppointmentStatus(previous).value} -> {target.value} "
            f"by {actor.role.value} {actor.user_id}"
        )
        return appointment

    def allowed_targets(self, appointment: Appointment, actor: Actor) -> List[AppointmentStatus]:
        """Statuses ``actor`` could request from the appointment's current status.

        Time and payment guards are not evaluated.
        """
        if appointment.is_terminal or not is_party_to(actor, appointment):
            return []
        current = AppointmentStatus(appointment.status)
        return [
            target for target, rule in TRANSITIONS.items()
            if current in rule.sources and actor.role in rule.roles
        ]


def record_cancellation(appointment: Appointment, actor: Actor, at: datetime, reason: Optional[str]) -> None:
    appointment.cancellation_reason = reason.strip() if reason else None
    appointment.cancelled_by = actor.user_id
    appointment.cancelled_at = at
