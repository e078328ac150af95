"""
Appointment State Machine

Holds the transition table and applies one transition per transaction:
re-read the persisted row under lock, validate against the table, write the
new status with its side effects, stage the outbox event, commit, dispatch.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
from datetime import datetime
import enum
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from clinic_booking.core.config import settings as default_settings
from clinic_booking.core.events import EventDispatcher, dispatcher as default_dispatcher
from clinic_booking.core.exceptions import (
    AppointmentNotFound, BaseCustomException, ConcurrentModification,
    InvalidTransition, SlotLockTimeout, handle_database_error
)
from clinic_booking.domain.appointments.capacity import CapacityReconciler
from clinic_booking.domain.appointments.models import (
    Appointment, AppointmentStatus, EventType, TERMINAL_STATUSES
)
from clinic_booking.domain.appointments.repository import (
    AppointmentRepository, EventOutboxRepository, SlotRepository
)
from clinic_booking.infrastructure.locks import KeyedLockManager, booking_locks

logger = logging.getLogger(__name__)


class Actor(str, enum.Enum):
    """Who is asking for a transition"""
    USER = "user"
    SWEEPER = "sweeper"


@dataclass(frozen=True)
class Transition:
    event: Optional[EventType] = None
    releases_capacity: bool = False
    sweeper_only: bool = False


S = AppointmentStatus

TRANSITIONS: Dict[Tuple[AppointmentStatus, AppointmentStatus], Transition] = {
    (S.PENDING, S.CONFIRMED): Transition(event=EventType.CONFIRMED),
    (S.SCHEDULED, S.CONFIRMED): Transition(event=EventType.CONFIRMED),
    (S.PENDING, S.CANCELLED): Transition(event=EventType.CANCELLED, releases_capacity=True),
    (S.SCHEDULED, S.CANCELLED): Transition(event=EventType.CANCELLED, releases_capacity=True),
    (S.CONFIRMED, S.CANCELLED): Transition(event=EventType.CANCELLED, releases_capacity=True),
    (S.CONFIRMED, S.IN_PROGRESS): Transition(),
    (S.IN_PROGRESS, S.COMPLETED): Transition(event=EventType.COMPLETED),
    (S.PENDING, S.EXPIRED): Transition(event=EventType.EXPIRED, releases_capacity=True, sweeper_only=True),
}


def check_transition(
    appointment_id,
    current: AppointmentStatus,
    target: AppointmentStatus,
    actor: Actor = Actor.USER
) -> Transition:
    """Return the table entry for current -> target or raise InvalidTransition"""
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(appointment_id, current.value, target.value)
    transition = TRANSITIONS.get((current, target))
    if transition is None or (transition.sweeper_only and actor != Actor.SWEEPER):
        raise InvalidTransition(appointment_id, current.value, target.value)
    return transition


def allowed_targets(current: AppointmentStatus, actor: Actor = Actor.USER):
    if current in TERMINAL_STATUSES:
        return []
    return [
        to for (frm, to), t in TRANSITIONS.items()
        if frm == current and (actor == Actor.SWEEPER or not t.sweeper_only)
    ]


class AppointmentStateMachine:
    """Applies transitions to persisted appointments"""

    def __init__(
        self,
        db,
        dispatcher: Optional[EventDispatcher] = None,
        config=None,
        clock: Callable[[], datetime] = datetime.now,
        locks: Optional[KeyedLockManager] = None
    ):
        self.db = db
        self.settings = config or default_settings
        self.dispatcher = dispatcher or default_dispatcher
        self.clock = clock
        self.locks = locks or booking_locks
        self.appointment_repo = AppointmentRepository(db)
        self.slot_repo = SlotRepository(db)
        self.outbox = EventOutboxRepository(db)
        self.reconciler = CapacityReconciler(db)

    def transition(
        self,
        appointment_id: uuid.UUID,
        target: AppointmentStatus,
        actor: Actor = Actor.USER,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Appointment:
        """Move an appointment to ``target`` in its own transaction"""
        target = AppointmentStatus(target)
        current = self.appointment_repo.get_by_id(appointment_id)
        if current is None:
            raise AppointmentNotFound(appointment_id)

        slot_id = current.slot_id
        timeout = self.settings.SLOT_LOCK_TIMEOUT_SECONDS
        now = now or self.clock()

        with self.locks.hold([("slot", slot_id)], timeout) as acquired:
            if not acquired:
                self.db.rollback()
                raise SlotLockTimeout(slot_id, timeout)
            try:
                appointment, event = self._apply(appointment_id, target, actor, reason, now)
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                logger.info(f"Appointment {appointment_id} changed concurrently, {target.value} rejected")
                raise ConcurrentModification("Appointment", appointment_id)
            except OperationalError as e:
                self.db.rollback()
                if "lock" in str(e).lower():
                    raise SlotLockTimeout(slot_id, timeout)
                raise handle_database_error(e, f"transition to {target.value}")
            except BaseCustomException as e:
                self.db.rollback()
                logger.info(f"Transition of {appointment_id} to {target.value} rejected [{e.error_code}]")
                raise
            except SQLAlchemyError as e:
                self.db.rollback()
                raise handle_database_error(e, f"transition to {target.value}")

        if event is not None:
            self.dispatcher.publish(self.db, event)
        return appointment

    def _apply(self, appointment_id, target, actor, reason, now):
        appointment = self.appointment_repo.get_for_update(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)

        previous = appointment.status
        transition = check_transition(appointment.id, previous, target, actor)

        slot = None
        if transition.releases_capacity:
            slot = self.slot_repo.get_for_update(
                appointment.slot_id, lock_timeout=self.settings.SLOT_LOCK_TIMEOUT_SECONDS
            )

        appointment.status = target
        appointment.status_changed_at = now
        appointment.updated_at = now
        if target == AppointmentStatus.CANCELLED:
            appointment.cancelled_reason = reason
        elif target == AppointmentStatus.COMPLETED:
            appointment.rating_eligible = True

        if slot is not None:
            self.reconciler.reconcile(slot)
        else:
            self.db.flush()

        event = None
        if transition.event is not None:
            event = self.outbox.record(transition.event, appointment, now)

        logger.info(
            f"Appointment {appointment.id} {previous.value} -> {target.value} by {actor.value}"
        )
        return appointment, event
