"""
Expiry Sweeper

Periodic pass that expires pending appointments older than the configured
threshold and releases their seats. Every appointment is handled in its own
transaction; one failure leaves that appointment pending for the next pass.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional
from datetime import date, datetime, timedelta
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError

from clinic_booking.core.config import settings as default_settings
from clinic_booking.core.events import EventDispatcher
from clinic_booking.core.exceptions import BaseCustomException, InvalidTransition
from clinic_booking.domain.appointments.models import AppointmentStatus
from clinic_booking.domain.appointments.repository import AppointmentRepository
from clinic_booking.domain.appointments.service import AvailabilityService
from clinic_booking.domain.appointments.state_machine import Actor, AppointmentStateMachine
from clinic_booking.infrastructure.locks import KeyedLockManager

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    examined: int = 0
    expired: List[uuid.UUID] = field(default_factory=list)
    skipped: int = 0
    failed: int = 0

    @property
    def expired_count(self) -> int:
        return len(self.expired)


class ExpirySweeper:
    """Expires stale pending appointments through the state machine"""

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
        self.clock = clock
        self.appointment_repo = AppointmentRepository(db)
        self.state_machine = AppointmentStateMachine(
            db, dispatcher=dispatcher, config=config, clock=clock, locks=locks
        )
        self.availability = AvailabilityService(db, config=config, clock=clock)

    def run(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> SweepResult:
        """Expire every appointment pending since before now - PENDING_EXPIRY_HOURS"""
        now = now or self.clock()
        cutoff = now - timedelta(hours=self.settings.PENDING_EXPIRY_HOURS)
        result = SweepResult()

        candidates = self.appointment_repo.get_stale_pending_ids(cutoff, limit=limit)
        # The candidate query opened a read; each transition runs in its own transaction
        self.db.rollback()

        for appointment_id in candidates:
            result.examined += 1
            try:
                self.state_machine.transition(
                    appointment_id, AppointmentStatus.EXPIRED, actor=Actor.SWEEPER, now=now
                )
                result.expired.append(appointment_id)
            except InvalidTransition:
                # Confirmed or cancelled since the candidate query ran
                result.skipped += 1
            except (BaseCustomException, SQLAlchemyError) as e:
                result.failed += 1
                logger.error(f"Could not expire appointment {appointment_id}: {e}")

        logger.info(
            f"Expiry sweep at {now.isoformat()}: examined={result.examined} "
            f"expired={result.expired_count} skipped={result.skipped} failed={result.failed}"
        )
        return result

    def purge_past_slots(self, today: Optional[date] = None) -> int:
        return self.availability.purge_past_slots(today)
