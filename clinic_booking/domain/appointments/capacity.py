"""
Capacity Reconciler

Keeps ``AvailabilitySlot.booked_count`` and ``is_available`` equal to what the
appointment rows say. Called inside every transaction that creates an
appointment or moves one out of a capacity-holding status.
"""

from dataclasses import dataclass
import logging
import uuid

from clinic_booking.core.exceptions import CapacityInvariantViolation, SlotNotFound
from clinic_booking.domain.appointments.models import AvailabilitySlot
from clinic_booking.domain.appointments.repository import AppointmentRepository, SlotRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotVerification:
    slot_id: uuid.UUID
    capacity: int
    booked_count: int
    holding_count: int
    is_available: bool

    @property
    def counter_consistent(self) -> bool:
        return self.booked_count == self.holding_count

    @property
    def flag_consistent(self) -> bool:
        return self.is_available == (self.holding_count < self.capacity)

    @property
    def within_capacity(self) -> bool:
        return self.holding_count <= self.capacity

    @property
    def ok(self) -> bool:
        return self.counter_consistent and self.flag_consistent and self.within_capacity


class CapacityReconciler:
    """Recomputes slot fill state from capacity-holding appointments"""

    def __init__(self, db):
        self.db = db
        self.appointment_repo = AppointmentRepository(db)
        self.slot_repo = SlotRepository(db)

    def reconcile(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        """Must run under the slot's lock, before the surrounding commit"""
        # Pending status changes have to be visible to the count
        self.db.flush()

        booked = self.appointment_repo.count_capacity_holding(slot.id)
        if booked > slot.capacity:
            logger.critical(
                f"Slot {slot.id} holds {booked} appointments against capacity {slot.capacity}"
            )
            raise CapacityInvariantViolation(slot.id, booked, slot.capacity)

        slot.booked_count = booked
        slot.is_available = booked < slot.capacity
        self.db.flush()
        return slot

    def verify(self, slot_id: uuid.UUID) -> SlotVerification:
        """Read-only consistency check of one slot"""
        slot = self.slot_repo.get_by_id(slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        # Counter may have been written by another session since this one loaded it
        self.db.refresh(slot)
        result = SlotVerification(
            slot_id=slot.id,
            capacity=slot.capacity,
            booked_count=slot.booked_count,
            holding_count=self.appointment_repo.count_capacity_holding(slot.id),
            is_available=slot.is_available,
        )
        if not result.ok:
            logger.error(f"Slot {slot.id} failed verification: {result}")
        return result
