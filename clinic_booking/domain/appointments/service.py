"""
Appointments Service Layer

Business logic for reserving slots, driving appointment lifecycle transitions
and publishing doctor availability.
"""

from typing import Optional, List, Tuple, Callable, Union
from datetime import datetime, date, time, timedelta
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError, OperationalError, IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from clinic_booking.core.config import settings as default_settings
from clinic_booking.core.events import EventDispatcher, dispatcher as default_dispatcher
from clinic_booking.core.exceptions import (
    AppointmentNotFound, BaseCustomException, BusinessLogicError, ConcurrentModification,
    ConflictError, DoctorNotFound, DoctorNotVerified, OutOfBookingHorizon, PatientDoubleBooked,
    SlotFull, SlotInPast, SlotLockTimeout, SlotNotFound, ValidationError,
    handle_database_error
)
from clinic_booking.domain.appointments.capacity import CapacityReconciler, SlotVerification
from clinic_booking.domain.appointments.models import (
    Appointment, AppointmentStatus, AppointmentType, AvailabilitySlot, EventType
)
from clinic_booking.domain.appointments.repository import (
    AppointmentRepository, EventOutboxRepository, SlotRepository
)
from clinic_booking.domain.appointments.state_machine import Actor, AppointmentStateMachine
from clinic_booking.domain.doctors.repository import ClinicRepository, DoctorRepository
from clinic_booking.domain.doctors.service import DerivedFlagEngine
from clinic_booking.infrastructure.locks import KeyedLockManager, booking_locks

logger = logging.getLogger(__name__)


def generate_time_slots(
    start_hour: int = 9,
    end_hour: int = 17,
    slot_minutes: int = 30,
    break_hours: Tuple[int, ...] = (12,)
) -> List[Tuple[time, time]]:
    """
    Cut a working day into consecutive windows of ``slot_minutes``.

    Windows touching a break hour are skipped, and the last window ends
    no later than ``end_hour``:00.
    """
    if not 0 <= start_hour < end_hour <= 23 or slot_minutes < 1:
        raise ValidationError(
            message="Working hours must satisfy 0 <= start_hour < end_hour <= 23 with a positive slot length",
            details={"start_hour": start_hour, "end_hour": end_hour, "slot_minutes": slot_minutes},
            error_code="INVALID_TIME_WINDOW"
        )

    windows = []
    cursor = start_hour * 60
    while cursor + slot_minutes <= end_hour * 60:
        last_minute = cursor + slot_minutes - 1
        if cursor // 60 not in break_hours and last_minute // 60 not in break_hours:
            end = cursor + slot_minutes
            windows.append((time(cursor // 60, cursor % 60), time(end // 60, end % 60)))
        cursor += slot_minutes
    return windows


def _slot_exists(slot_date: date, start_time: time) -> ConflictError:
    return ConflictError(
        message="A slot already starts at this time",
        details={"date": slot_date.isoformat(), "start_time": start_time.isoformat()},
        error_code="SLOT_EXISTS"
    )


def _slot_in_use(slot_id: uuid.UUID) -> ConflictError:
    return ConflictError(
        message="Slot has appointments and cannot be removed",
        details={"slot_id": str(slot_id)},
        error_code="SLOT_HAS_APPOINTMENTS"
    )


class ReservationEngine:
    """Validates and atomically commits a booking against a slot"""

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
        self.slot_repo = SlotRepository(db)
        self.appointment_repo = AppointmentRepository(db)
        self.doctor_repo = DoctorRepository(db)
        self.outbox = EventOutboxRepository(db)
        self.reconciler = CapacityReconciler(db)

    def reserve(
        self,
        patient_id: uuid.UUID,
        slot_id: uuid.UUID,
        appointment_type: Union[AppointmentType, str] = AppointmentType.CONSULTATION,
        notes: Optional[str] = None
    ) -> Appointment:
        """
        Book one seat in a slot for a patient.

        Every precondition is checked inside a single transaction while the
        slot is locked, so the capacity count cannot go stale between check
        and insert. Raises a ReservationError subclass on any rejection.
        """
        appointment_type = self._validate_type(appointment_type)
        notes = self._validate_notes(notes)

        timeout = self.settings.SLOT_LOCK_TIMEOUT_SECONDS
        keys = [("slot", slot_id), ("patient", patient_id)]

        with self.locks.hold(keys, timeout) as acquired:
            if not acquired:
                logger.info(f"Reservation of slot {slot_id} rejected [SLOT_LOCK_TIMEOUT]")
                raise SlotLockTimeout(slot_id, timeout)
            try:
                appointment, event = self._reserve_locked(patient_id, slot_id, appointment_type, notes)
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                logger.info(f"Reservation of slot {slot_id} rejected [CONCURRENT_MODIFICATION]")
                raise ConcurrentModification("AvailabilitySlot", slot_id)
            except OperationalError as e:
                self.db.rollback()
                if "lock" in str(e).lower():
                    logger.info(f"Reservation of slot {slot_id} rejected [SLOT_LOCK_TIMEOUT]")
                    raise SlotLockTimeout(slot_id, timeout)
                raise handle_database_error(e, "reserve")
            except BaseCustomException as e:
                self.db.rollback()
                logger.info(f"Reservation of slot {slot_id} for patient {patient_id} rejected [{e.error_code}]")
                raise
            except SQLAlchemyError as e:
                self.db.rollback()
                raise handle_database_error(e, "reserve")

        logger.info(
            f"Appointment {appointment.id} reserved on slot {slot_id} for patient {patient_id} "
            f"({appointment.status.value})"
        )
        self.dispatcher.publish(self.db, event)
        return appointment

    def _reserve_locked(self, patient_id, slot_id, appointment_type, notes):
        now = self.clock()

        slot = self.slot_repo.get_for_update(slot_id, lock_timeout=self.settings.SLOT_LOCK_TIMEOUT_SECONDS)
        if slot is None:
            raise SlotNotFound(slot_id)
        if datetime.combine(slot.date, slot.start_time) < now:
            raise SlotInPast(slot_id)
        if slot.date > now.date() + timedelta(days=self.settings.BOOKING_HORIZON_DAYS):
            raise OutOfBookingHorizon(slot.date, self.settings.BOOKING_HORIZON_DAYS)

        doctor = self.doctor_repo.get_by_id(slot.doctor_id)
        if doctor is None or not doctor.verified:
            raise DoctorNotVerified(slot.doctor_id)
        if not doctor.is_active:
            raise DoctorNotVerified(slot.doctor_id, reason="Doctor is not accepting appointments")

        self.appointment_repo.lock_patient(patient_id)
        overlap = self.appointment_repo.find_patient_overlap(
            patient_id, slot.date, slot.start_time, slot.end_time
        )
        if overlap is not None:
            raise PatientDoubleBooked(patient_id, overlap.id)

        held = self.appointment_repo.count_capacity_holding(slot.id)
        if held >= slot.capacity:
            raise SlotFull(slot.id, slot.capacity)

        appointment = self.appointment_repo.create({
            "slot_id": slot.id,
            "doctor_id": slot.doctor_id,
            "clinic_id": slot.clinic_id,
            "patient_id": patient_id,
            "appointment_date": slot.date,
            "start_time": slot.start_time,
            "end_time": slot.end_time,
            "appointment_type": appointment_type,
            "status": AppointmentStatus(self.settings.INITIAL_APPOINTMENT_STATUS),
            "notes": notes,
            "fee_charged": doctor.fee,
            "created_at": now,
            "updated_at": now,
            "status_changed_at": now,
        })
        self.reconciler.reconcile(slot)
        event = self.outbox.record(EventType.CREATED, appointment, now)
        return appointment, event

    @staticmethod
    def _validate_type(appointment_type) -> AppointmentType:
        try:
            return AppointmentType(appointment_type)
        except ValueError:
            raise ValidationError(
                message="Unknown appointment type",
                details={
                    "appointment_type": str(appointment_type),
                    "allowed": [t.value for t in AppointmentType],
                },
                error_code="INVALID_APPOINTMENT_TYPE"
            )

    def _validate_notes(self, notes: Optional[str]) -> Optional[str]:
        if notes is None:
            return None
        notes = notes.strip()
        if not notes:
            return None
        if len(notes) > self.settings.MAX_NOTES_LENGTH:
            raise ValidationError(
                message=f"Notes must be at most {self.settings.MAX_NOTES_LENGTH} characters",
                details={"length": len(notes)},
                error_code="NOTES_TOO_LONG"
            )
        return notes


class AppointmentService:
    """Service layer for appointment booking and lifecycle"""

    def __init__(
        self,
        db,
        dispatcher: Optional[EventDispatcher] = None,
        config=None,
        clock: Callable[[], datetime] = datetime.now,
        locks: Optional[KeyedLockManager] = None
    ):
        self.db = db
        self.appointment_repo = AppointmentRepository(db)
        self.engine = ReservationEngine(db, dispatcher=dispatcher, config=config, clock=clock, locks=locks)
        self.state_machine = AppointmentStateMachine(
            db, dispatcher=dispatcher, config=config, clock=clock, locks=locks
        )

    def reserve(
        self,
        patient_id: uuid.UUID,
        slot_id: uuid.UUID,
        appointment_type: Union[AppointmentType, str] = AppointmentType.CONSULTATION,
        notes: Optional[str] = None
    ) -> Appointment:
        """Create a new appointment"""
        return self.engine.reserve(patient_id, slot_id, appointment_type, notes)

    def confirm(self, appointment_id: uuid.UUID) -> Appointment:
        """Confirm an appointment"""
        return self.state_machine.transition(appointment_id, AppointmentStatus.CONFIRMED)

    def cancel(self, appointment_id: uuid.UUID, reason: Optional[str] = None) -> Appointment:
        """Cancel an appointment and release its seat"""
        return self.state_machine.transition(appointment_id, AppointmentStatus.CANCELLED, reason=reason)

    def start(self, appointment_id: uuid.UUID) -> Appointment:
        """Patient checked in; consultation under way"""
        return self.state_machine.transition(appointment_id, AppointmentStatus.IN_PROGRESS)

    def complete(self, appointment_id: uuid.UUID) -> Appointment:
        """Complete an appointment"""
        return self.state_machine.transition(appointment_id, AppointmentStatus.COMPLETED)

    def expire(self, appointment_id: uuid.UUID, now: Optional[datetime] = None) -> Appointment:
        return self.state_machine.transition(
            appointment_id, AppointmentStatus.EXPIRED, actor=Actor.SWEEPER, now=now
        )

    def get_appointment(self, appointment_id: uuid.UUID) -> Appointment:
        """Get appointment by ID"""
        appointment = self.appointment_repo.get_by_id(appointment_id)
        if not appointment:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def list_appointments(
        self,
        skip: int = 0,
        limit: int = 20,
        patient_id: Optional[uuid.UUID] = None,
        doctor_id: Optional[uuid.UUID] = None,
        status: Optional[AppointmentStatus] = None,
        appointment_type: Optional[AppointmentType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> Tuple[List[Appointment], int]:
        """Get appointments with filtering and pagination"""
        filters = dict(
            patient_id=patient_id,
            doctor_id=doctor_id,
            status=status,
            appointment_type=appointment_type,
            date_from=date_from,
            date_to=date_to
        )
        appointments = self.appointment_repo.get_all(skip=skip, limit=limit, **filters)
        total = self.appointment_repo.count(**filters)
        return appointments, total


class AvailabilityService:
    """Service layer for publishing and listing availability slots"""

    def __init__(
        self,
        db,
        config=None,
        clock: Callable[[], datetime] = datetime.now,
        locks: Optional[KeyedLockManager] = None
    ):
        self.db = db
        self.settings = config or default_settings
        self.clock = clock
        self.locks = locks or booking_locks
        self.slot_repo = SlotRepository(db)
        self.appointment_repo = AppointmentRepository(db)
        self.doctor_repo = DoctorRepository(db)
        self.clinic_repo = ClinicRepository(db)
        self.reconciler = CapacityReconciler(db)
        self.flags = DerivedFlagEngine(db)

    def publish_slot(
        self,
        doctor_id: uuid.UUID,
        clinic_id: uuid.UUID,
        slot_date: date,
        start_time: time,
        end_time: time,
        capacity: int = 1
    ) -> AvailabilitySlot:
        """Publish a new slot and recompute availability_created"""
        return self.publish_slots(doctor_id, clinic_id, slot_date, [(start_time, end_time)], capacity)[0]

    def publish_slots(
        self,
        doctor_id: uuid.UUID,
        clinic_id: uuid.UUID,
        slot_date: date,
        windows: List[Tuple[time, time]],
        capacity: int = 1
    ) -> List[AvailabilitySlot]:
        """
        Publish several slots of one day in a single transaction.

        Either every window becomes a slot or none does. availability_created
        is recomputed once for the whole batch.
        """
        if not windows:
            raise ValidationError(
                message="At least one time window is required",
                details={"date": slot_date.isoformat()},
                error_code="NO_TIME_WINDOWS"
            )
        for start_time, end_time in windows:
            if start_time >= end_time:
                raise ValidationError(
                    message="Start time must be before end time",
                    details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
                    error_code="INVALID_TIME_WINDOW"
                )
        if capacity < 1:
            raise ValidationError(
                message="Capacity must be at least 1",
                details={"capacity": capacity},
                error_code="INVALID_CAPACITY"
            )
        if slot_date < self.clock().date():
            raise BusinessLogicError(
                message="Cannot publish availability for past dates",
                details={"date": slot_date.isoformat()},
                error_code="SLOT_IN_PAST"
            )
        if not self.doctor_repo.get_by_id(doctor_id):
            raise DoctorNotFound(doctor_id)
        if not self.clinic_repo.get_link(doctor_id, clinic_id):
            raise BusinessLogicError(
                message="Doctor is not linked to this clinic",
                details={"doctor_id": str(doctor_id), "clinic_id": str(clinic_id)},
                error_code="CLINIC_NOT_LINKED"
            )

        starts = set()
        for start_time, _ in windows:
            if start_time in starts or self.slot_repo.find_existing(doctor_id, clinic_id, slot_date, start_time):
                raise _slot_exists(slot_date, start_time)
            starts.add(start_time)

        now = self.clock()
        slots = [
            self.slot_repo.create({
                "doctor_id": doctor_id,
                "clinic_id": clinic_id,
                "date": slot_date,
                "start_time": start_time,
                "end_time": end_time,
                "capacity": capacity,
                "booked_count": 0,
                "is_available": True,
                "created_at": now,
                "updated_at": now,
            })
            for start_time, end_time in windows
        ]
        self.flags.on_availability_changed(doctor_id)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise _slot_exists(slot_date, windows[0][0])
        logger.info(f"Published {len(slots)} slot(s) for doctor {doctor_id} on {slot_date}")
        return slots

    def publish_day(
        self,
        doctor_id: uuid.UUID,
        clinic_id: uuid.UUID,
        slot_date: date,
        capacity: int = 1,
        start_hour: int = 9,
        end_hour: int = 17,
        slot_minutes: int = 30,
        break_hours: Tuple[int, ...] = (12,)
    ) -> List[AvailabilitySlot]:
        """Publish a working day cut into equal slots"""
        windows = generate_time_slots(start_hour, end_hour, slot_minutes, break_hours)
        return self.publish_slots(doctor_id, clinic_id, slot_date, windows, capacity)

    def get_slot(self, slot_id: uuid.UUID) -> AvailabilitySlot:
        slot = self.slot_repo.get_by_id(slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        return slot

    def update_slot_capacity(self, slot_id: uuid.UUID, capacity: int) -> AvailabilitySlot:
        """Resize a slot; never below the seats already held"""
        if capacity < 1:
            raise ValidationError(
                message="Capacity must be at least 1",
                details={"capacity": capacity},
                error_code="INVALID_CAPACITY"
            )

        def resize(slot: AvailabilitySlot) -> None:
            held = self.appointment_repo.count_capacity_holding(slot.id)
            if capacity < held:
                raise ConflictError(
                    message="Capacity cannot be lower than the seats already booked",
                    details={"slot_id": str(slot.id), "capacity": capacity, "booked_count": held},
                    error_code="CAPACITY_BELOW_BOOKED"
                )
            slot.capacity = capacity
            slot.updated_at = self.clock()
            self.reconciler.reconcile(slot)

        slot = self._write_locked(slot_id, "update slot capacity", resize)
        logger.info(f"Slot {slot_id} capacity set to {capacity}")
        return slot

    def remove_slot(self, slot_id: uuid.UUID) -> bool:
        """Delete a slot nobody has booked and recompute availability_created"""
        def delete(slot: AvailabilitySlot) -> None:
            if self.slot_repo.has_appointments(slot.id):
                raise _slot_in_use(slot.id)
            doctor_id = slot.doctor_id
            self.slot_repo.delete(slot)
            self.flags.on_availability_changed(doctor_id)

        self._write_locked(slot_id, "remove slot", delete, booked_conflict=True)
        logger.info(f"Slot {slot_id} removed")
        return True

    def _write_locked(self, slot_id, operation: str, apply, booked_conflict: bool = False) -> AvailabilitySlot:
        """
        Run ``apply(slot)`` and commit while holding the slot lock.

        The slot is re-read under a row lock first, so reservations on it
        are serialized with the write. With ``booked_conflict`` a booking
        that slipped in anyway surfaces as SLOT_HAS_APPOINTMENTS.
        """
        timeout = self.settings.SLOT_LOCK_TIMEOUT_SECONDS
        with self.locks.hold([("slot", slot_id)], timeout) as acquired:
            if not acquired:
                raise SlotLockTimeout(slot_id, timeout)
            try:
                slot = self.slot_repo.get_for_update(slot_id, lock_timeout=timeout)
                if slot is None:
                    raise SlotNotFound(slot_id)
                apply(slot)
                self.db.commit()
                return slot
            except (IntegrityError, StaleDataError) as e:
                self.db.rollback()
                if booked_conflict and self.slot_repo.has_appointments(slot_id):
                    logger.info(f"Slot {slot_id} was booked during {operation}")
                    raise _slot_in_use(slot_id)
                if isinstance(e, StaleDataError):
                    raise ConcurrentModification("AvailabilitySlot", slot_id)
                raise handle_database_error(e, operation)
            except OperationalError as e:
                self.db.rollback()
                if "lock" in str(e).lower():
                    raise SlotLockTimeout(slot_id, timeout)
                raise handle_database_error(e, operation)
            except BaseCustomException:
                self.db.rollback()
                raise
            except SQLAlchemyError as e:
                self.db.rollback()
                raise handle_database_error(e, operation)

    def list_availability(
        self,
        doctor_id: uuid.UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        only_available: bool = False
    ) -> List[AvailabilitySlot]:
        """Slots for a doctor annotated with is_available and remaining capacity"""
        if date_from and date_to and date_from > date_to:
            raise ValidationError(
                message="date_from must not be after date_to",
                details={"date_from": date_from.isoformat(), "date_to": date_to.isoformat()},
                error_code="INVALID_DATE_RANGE"
            )
        return self.slot_repo.list_for_doctor(doctor_id, date_from, date_to, only_available)

    def verify_slot(self, slot_id: uuid.UUID) -> SlotVerification:
        return self.reconciler.verify(slot_id)

    def purge_past_slots(self, today: Optional[date] = None) -> int:
        """Delete unbooked slots older than the retention window"""
        today = today or self.clock().date()
        cutoff = today - timedelta(days=self.settings.SLOT_RETENTION_DAYS)

        slots = self.slot_repo.get_purgeable(cutoff)
        doctor_ids = {slot.doctor_id for slot in slots}
        for slot in slots:
            self.slot_repo.delete(slot)
        for doctor_id in doctor_ids:
            self.flags.on_availability_changed(doctor_id)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise handle_database_error(e, "purge past slots")

        if slots:
            logger.info(f"Purged {len(slots)} slots dated before {cutoff}")
        return len(slots)
