import pytest
from uuid import uuid4

from clinic_booking.core.exceptions import CapacityInvariantViolation, SlotFull, SlotNotFound
from clinic_booking.domain.appointments.capacity import CapacityReconciler, SlotVerification
from clinic_booking.domain.appointments.models import AppointmentStatus


@pytest.mark.unit
def test_verification_properties() -> None:
    good = SlotVerification(slot_id=uuid4(), capacity=2, booked_count=1, holding_count=1, is_available=True)
    assert good.ok

    drifted = SlotVerification(slot_id=uuid4(), capacity=2, booked_count=2, holding_count=1, is_available=False)
    assert not drifted.counter_consistent
    assert not drifted.flag_consistent
    assert drifted.within_capacity
    assert not drifted.ok

    overfull = SlotVerification(slot_id=uuid4(), capacity=1, booked_count=2, holding_count=2, is_available=False)
    assert not overfull.within_capacity


@pytest.mark.integration
class TestCapacityReconciler:
    """Slot counters follow the appointment rows."""

    def test_fresh_slot_verifies(self, availability_service, slot) -> None:
        result = availability_service.verify_slot(slot.id)

        assert result.ok
        assert result.booked_count == 0
        assert result.is_available is True

    def test_cancel_then_reserve_reuses_the_seat(self, appointment_service, slot, db_session) -> None:
        first = appointment_service.reserve(uuid4(), slot.id)
        with pytest.raises(SlotFull):
            appointment_service.reserve(uuid4(), slot.id)

        appointment_service.cancel(first.id)
        second = appointment_service.reserve(uuid4(), slot.id)

        assert second.status == AppointmentStatus.SCHEDULED
        result = CapacityReconciler(db_session).verify(slot.id)
        assert result.ok
        assert result.booked_count == 1
        assert result.is_available is False

    def test_reconcile_repairs_drifted_counter(self, appointment_service, make_slot, db_session) -> None:
        slot = make_slot(capacity=3)
        appointment_service.reserve(uuid4(), slot.id)
        slot.booked_count = 3
        slot.is_available = False
        db_session.commit()

        reconciler = CapacityReconciler(db_session)
        assert not reconciler.verify(slot.id).ok

        reconciler.reconcile(slot)
        db_session.commit()

        result = reconciler.verify(slot.id)
        assert result.ok
        assert result.booked_count == 1
        assert result.is_available is True

    def test_reconcile_refuses_to_exceed_capacity(self, appointment_service, make_slot, db_session) -> None:
        slot = make_slot(capacity=2)
        appointment_service.reserve(uuid4(), slot.id)
        appointment_service.reserve(uuid4(), slot.id)

        slot.capacity = 1
        with pytest.raises(CapacityInvariantViolation) as exception_info:
            CapacityReconciler(db_session).reconcile(slot)
        db_session.rollback()

        assert exception_info.value.status_code == 500
        assert exception_info.value.details["booked"] == 2

    def test_verify_unknown_slot(self, db_session) -> None:
        with pytest.raises(SlotNotFound):
            CapacityReconciler(db_session).verify(uuid4())

    def test_remaining_capacity(self, appointment_service, make_slot, db_session) -> None:
        slot = make_slot(capacity=3)
        appointment_service.reserve(uuid4(), slot.id)

        db_session.refresh(slot)
        assert slot.remaining_capacity == 2
