import logging
from typing import Dict, Any, Callable

from clinic_booking.core.events import AppointmentEventPayload
from clinic_booking.domain.appointments.models import EventType

logger = logging.getLogger(__name__)


SUBJECTS = {
    EventType.CREATED: "Appointment booked",
    EventType.CONFIRMED: "Appointment confirmed",
    EventType.CANCELLED: "Appointment cancelled",
    EventType.EXPIRED: "Appointment request expired",
    EventType.COMPLETED: "How was your visit?",
}


def send_notification(recipient: str, subject: str, body: str, channel: str = "push") -> Dict[str, Any]:
    """Lightweight notification sender used by event subscribers.

    Provider delivery (push, SMS, email) lives outside this service; this
    adapter only records the hand-off.
    """
    logger.info(f"Sending {channel} notification to {recipient}: {subject}")
    return {"status": "sent", "recipient": recipient, "channel": channel}


class NotificationSubscriber:
    """Event subscriber that notifies the patient of each appointment event"""

    def __init__(self, sender: Callable[..., Dict[str, Any]] = send_notification, channel: str = "push"):
        self.sender = sender
        self.channel = channel

    def __call__(self, event: AppointmentEventPayload) -> None:
        subject = SUBJECTS.get(event.event_type, "Appointment update")
        body = (
            f"Appointment {event.appointment_id} {event.event_type.value} "
            f"at {event.timestamp.isoformat()}"
        )
        result = self.sender(str(event.patient_id), subject, body, channel=self.channel)
        if result.get("status") != "sent":
            raise RuntimeError(f"Notification not sent: {result.get('error', 'unknown error')}")
