"""
Appointment event dispatch.

Events are written to the ``appointment_events`` outbox inside the transaction
that changes the appointment. After commit the dispatcher hands them to every
subscriber and stamps ``delivered_at``. Rows left undelivered are picked up by
the redelivery task, so subscribers see each event at least once and must
tolerate duplicates.
"""

from typing import Callable, List, Optional
from datetime import datetime
import logging
import uuid

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError

from clinic_booking.domain.appointments.models import AppointmentEvent, EventType
from clinic_booking.domain.appointments.repository import EventOutboxRepository


logger = logging.getLogger(__name__)


class AppointmentEventPayload(BaseModel):
    """What subscribers receive"""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    event_id: uuid.UUID = Field(validation_alias="id")
    event_type: EventType
    appointment_id: uuid.UUID
    doctor_id: uuid.UUID
    patient_id: uuid.UUID
    slot_id: uuid.UUID
    timestamp: datetime = Field(validation_alias="occurred_at")


Subscriber = Callable[[AppointmentEventPayload], None]


class EventDispatcher:
    """Fan-out of committed outbox rows to in-process subscribers"""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._subscribers: List[Subscriber] = []
        self.clock = clock

    def subscribe(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def clear(self) -> None:
        self._subscribers.clear()

    @property
    def subscribers(self) -> List[Subscriber]:
        return list(self._subscribers)

    def publish(self, db, event: AppointmentEvent) -> bool:
        """
        Deliver one committed outbox row.

        Returns True when every subscriber accepted the event. Failures are
        logged and recorded on the row; they never reach the caller.
        """
        payload = AppointmentEventPayload.model_validate(event)
        error: Optional[str] = None

        for subscriber in self._subscribers:
            try:
                subscriber(payload)
            except Exception as e:
                name = getattr(subscriber, "__name__", subscriber.__class__.__name__)
                logger.error(
                    f"Subscriber {name} failed for {payload.event_type.value} event "
                    f"of appointment {payload.appointment_id}: {e}"
                )
                error = f"{name}: {e}"[:500]

        try:
            event.attempts = (event.attempts or 0) + 1
            if error is None:
                event.delivered_at = self.clock()
                event.last_error = None
            else:
                event.last_error = error
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Could not record delivery of event {payload.event_id}: {e}")
            return False

        return error is None

    def redeliver(self, db, limit: int = 100) -> int:
        """Retry undelivered events; returns how many were delivered"""
        delivered = 0
        for event in EventOutboxRepository(db).get_undelivered(limit=limit):
            if self.publish(db, event):
                delivered += 1
        return delivered


# Process-wide dispatcher; subscribers are registered at app and worker startup
dispatcher = EventDispatcher()
