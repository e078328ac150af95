"""
Appointments Repository Layer

Provides data access operations for availability slots, appointments and the
event outbox. Repositories flush; the owning service commits.
"""

from typing import Optional, List
from sqlalchemy import and_, func, text, exists
from datetime import datetime, date, time
import uuid

from clinic_booking.domain.appointments.models import (
    Appointment, AppointmentStatus, AppointmentType, AppointmentEvent,
    AvailabilitySlot, EventType, CAPACITY_HOLDING_STATUSES
)


def _is_postgres(db) -> bool:
    return db.get_bind().dialect.name == "postgresql"


class SlotRepository:
    """Repository for availability slot data access operations"""

    def __init__(self, db):
        self.db = db

    def create(self, slot_data: dict) -> AvailabilitySlot:
        """Create a new availability slot"""
        slot = AvailabilitySlot(**slot_data)
        self.db.add(slot)
        self.db.flush()
        return slot

    def get_by_id(self, slot_id: uuid.UUID) -> Optional[AvailabilitySlot]:
        """Get slot by ID"""
        return self.db.query(AvailabilitySlot).filter(AvailabilitySlot.id == slot_id).first()

    def get_for_update(self, slot_id: uuid.UUID, lock_timeout: Optional[float] = None) -> Optional[AvailabilitySlot]:
        """Re-read the slot with a row lock held until the transaction ends"""
        if lock_timeout and _is_postgres(self.db):
            self.db.execute(text(f"SET LOCAL lock_timeout = '{int(lock_timeout * 1000)}ms'"))
        return self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.id == slot_id
        ).with_for_update().populate_existing().first()

    def find_existing(
        self,
        doctor_id: uuid.UUID,
        clinic_id: uuid.UUID,
        slot_date: date,
        start_time: time
    ) -> Optional[AvailabilitySlot]:
        return self.db.query(AvailabilitySlot).filter(
            and_(
                AvailabilitySlot.doctor_id == doctor_id,
                AvailabilitySlot.clinic_id == clinic_id,
                AvailabilitySlot.date == slot_date,
                AvailabilitySlot.start_time == start_time
            )
        ).first()

    def list_for_doctor(
        self,
        doctor_id: uuid.UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        only_available: bool = False
    ) -> List[AvailabilitySlot]:
        """Get slots for a doctor within a date range"""
        query = self.db.query(AvailabilitySlot).filter(AvailabilitySlot.doctor_id == doctor_id)
        if date_from:
            query = query.filter(AvailabilitySlot.date >= date_from)
        if date_to:
            query = query.filter(AvailabilitySlot.date <= date_to)
        if only_available:
            query = query.filter(AvailabilitySlot.is_available == True)  # noqa: E712
        return query.order_by(AvailabilitySlot.date, AvailabilitySlot.start_time).all()

    def has_appointments(self, slot_id: uuid.UUID) -> bool:
        return self.db.query(
            exists().where(Appointment.slot_id == slot_id)
        ).scalar()

    def get_purgeable(self, cutoff: date) -> List[AvailabilitySlot]:
        """Slots dated before ``cutoff`` that no appointment references"""
        return self.db.query(AvailabilitySlot).filter(
            and_(
                AvailabilitySlot.date < cutoff,
                ~exists().where(Appointment.slot_id == AvailabilitySlot.id)
            )
        ).all()

    def delete(self, slot: AvailabilitySlot) -> None:
        self.db.delete(slot)
        self.db.flush()


class AppointmentRepository:
    """Repository for appointment data access operations"""

    def __init__(self, db):
        self.db = db

    def create(self, appointment_data: dict) -> Appointment:
        """Create a new appointment"""
        appointment = Appointment(**appointment_data)
        self.db.add(appointment)
        self.db.flush()
        return appointment

    def get_by_id(self, appointment_id: uuid.UUID) -> Optional[Appointment]:
        """Get appointment by ID"""
        return self.db.query(Appointment).filter(Appointment.id == appointment_id).first()

    def get_for_update(self, appointment_id: uuid.UUID) -> Optional[Appointment]:
        """Re-read the persisted appointment under a row lock"""
        return self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).with_for_update().populate_existing().first()

    def lock_patient(self, patient_id: uuid.UUID) -> None:
        """Serialize bookings of one patient across processes (PostgreSQL only)"""
        if _is_postgres(self.db):
            self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": str(patient_id)}
            )

    def count_capacity_holding(self, slot_id: uuid.UUID) -> int:
        """Count appointments currently occupying a seat in the slot"""
        return self.db.query(func.count(Appointment.id)).filter(
            and_(
                Appointment.slot_id == slot_id,
                Appointment.status.in_(CAPACITY_HOLDING_STATUSES)
            )
        ).scalar() or 0

    def find_patient_overlap(
        self,
        patient_id: uuid.UUID,
        appointment_date: date,
        start_time: time,
        end_time: time
    ) -> Optional[Appointment]:
        """First capacity-holding appointment of the patient overlapping [start, end)"""
        return self.db.query(Appointment).filter(
            and_(
                Appointment.patient_id == patient_id,
                Appointment.appointment_date == appointment_date,
                Appointment.start_time < end_time,
                Appointment.end_time > start_time,
                Appointment.status.in_(CAPACITY_HOLDING_STATUSES)
            )
        ).first()

    def get_all(
        self,
        skip: int = 0,
        limit: int = 20,
        patient_id: Optional[uuid.UUID] = None,
        doctor_id: Optional[uuid.UUID] = None,
        slot_id: Optional[uuid.UUID] = None,
        status: Optional[AppointmentStatus] = None,
        appointment_type: Optional[AppointmentType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> List[Appointment]:
        """Get appointments with filtering"""
        query = self._filtered(
            patient_id=patient_id,
            doctor_id=doctor_id,
            slot_id=slot_id,
            status=status,
            appointment_type=appointment_type,
            date_from=date_from,
            date_to=date_to
        )
        return query.order_by(
            Appointment.appointment_date.desc(),
            Appointment.start_time.desc()
        ).offset(skip).limit(limit).all()

    def count(self, **filters) -> int:
        """Count appointments with filters"""
        return self._filtered(**filters).count()

    def _filtered(
        self,
        patient_id: Optional[uuid.UUID] = None,
        doctor_id: Optional[uuid.UUID] = None,
        slot_id: Optional[uuid.UUID] = None,
        status: Optional[AppointmentStatus] = None,
        appointment_type: Optional[AppointmentType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ):
        query = self.db.query(Appointment)
        if patient_id:
            query = query.filter(Appointment.patient_id == patient_id)
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if slot_id:
            query = query.filter(Appointment.slot_id == slot_id)
        if status:
            query = query.filter(Appointment.status == status)
        if appointment_type:
            query = query.filter(Appointment.appointment_type == appointment_type)
        if date_from:
            query = query.filter(Appointment.appointment_date >= date_from)
        if date_to:
            query = query.filter(Appointment.appointment_date <= date_to)
        return query

    def get_stale_pending_ids(self, created_before: datetime, limit: Optional[int] = None) -> List[uuid.UUID]:
        """IDs of pending appointments created before the cutoff"""
        query = self.db.query(Appointment.id).filter(
            and_(
                Appointment.status == AppointmentStatus.PENDING,
                Appointment.created_at < created_before
            )
        ).order_by(Appointment.created_at)
        if limit:
            query = query.limit(limit)
        return [row[0] for row in query.all()]


class EventOutboxRepository:
    """Repository for the appointment event outbox"""

    def __init__(self, db):
        self.db = db

    def add(self, event_data: dict) -> AppointmentEvent:
        event = AppointmentEvent(**event_data)
        self.db.add(event)
        self.db.flush()
        return event

    def record(self, event_type: EventType, appointment: Appointment, occurred_at: datetime) -> AppointmentEvent:
        """Stage an event for the appointment in the current transaction"""
        return self.add({
            "event_type": event_type,
            "appointment_id": appointment.id,
            "doctor_id": appointment.doctor_id,
            "patient_id": appointment.patient_id,
            "slot_id": appointment.slot_id,
            "occurred_at": occurred_at,
        })

    def get_by_id(self, event_id: uuid.UUID) -> Optional[AppointmentEvent]:
        return self.db.query(AppointmentEvent).filter(AppointmentEvent.id == event_id).first()

    def get_undelivered(self, limit: int = 100) -> List[AppointmentEvent]:
        """Oldest events not yet acknowledged by every subscriber"""
        return self.db.query(AppointmentEvent).filter(
            AppointmentEvent.delivered_at.is_(None)
        ).order_by(AppointmentEvent.occurred_at).limit(limit).all()

    def get_for_appointment(self, appointment_id: uuid.UUID) -> List[AppointmentEvent]:
        return self.db.query(AppointmentEvent).filter(
            AppointmentEvent.appointment_id == appointment_id
        ).order_by(AppointmentEvent.occurred_at).all()
