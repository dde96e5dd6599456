from enum import Enum
from typing import Optional
import logging

import httpx
from fastapi import BackgroundTasks

from ..core.config import settings
from ..schemas.appointment import AppointmentResponse

logger = logging.getLogger(__name__)

class NotificationEvent(str, Enum):
    BOOKING_CREATED = "appointment_booking"
    CONFIRMED = "appointment_confirmation"
    IN_PROGRESS = "appointment_started"
    COMPLETED = "appointment_completed"
    CANCELLED = "appointment_cancellation"
    NO_SHOW = "appointment_no_show"
    RESCHEDULED = "appointment_rescheduled"
    REMINDER = "appointment_reminder"
    PAYMENT_SUCCESS = "payment_success"


class NotificationDispatcher:
    """Delivers appointment events. Only ever called after a commit."""

    def notify(self, event: NotificationEvent, appointment: AppointmentResponse) -> None:
        raise NotImplementedError


class LoggingNotificationDispatcher(NotificationDispatcher):
    def notify(self, event: NotificationEvent, appointment: AppointmentResponse) -> None:
        logger.info(
            f"Notification {event.value}: appointment {appointment.id} "
            f"(patient {appointment.patient_id}, doctor {appointment.doctor_id})"
        )


class WebhookNotificationDispatcher(NotificationDispatcher):
    """POSTs events to the notification service."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.timeout = timeout
        self.client = client

    def notify(self, event: NotificationEvent, appointment: AppointmentResponse) -> None:
        payload = {"event": event.value, "appointment": appointment.model_dump(mode="json")}
        if self.client is not None:
            response = self.client.post(self.url, json=payload, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=payload)
        response.raise_for_status()


class BackgroundNotificationDispatcher(NotificationDispatcher):
    """Runs delivery after the response is sent; failures are only logged."""

    def __init__(self, background_tasks: BackgroundTasks, inner: NotificationDispatcher):
        self.background_tasks = background_tasks
        self.inner = inner

    def notify(self, event: NotificationEvent, appointment: AppointmentResponse) -> None:
        self.background_tasks.add_task(deliver_quietly, self.inner, event, appointment)


def deliver_quietly(dispatcher: NotificationDispatcher, event: NotificationEvent, appointment: AppointmentResponse) -> None:
    try:
        dispatcher.notify(event, appointment)
    except Exception as e:
        logger.warning(f"Notification {event.value} for appointment {appointment.id} failed: {str(e)}")


def build_dispatcher() -> NotificationDispatcher:
    if settings.NOTIFICATION_WEBHOOK_URL:
        return WebhookNotificationDispatcher(
            settings.NOTIFICATION_WEBHOOK_URL,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    return LoggingNotificationDispatcher()
