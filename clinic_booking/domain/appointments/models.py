"""
Appointments Domain Models

Implements the database models for:
- Availability slots with capacity and fill counter
- Appointments and their lifecycle status
- Transactional outbox of appointment events
"""

from sqlalchemy import (
    Column, String, Date, Boolean, DateTime, ForeignKey,
    Integer, Time, Text, Enum, Uuid, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from clinic_booking.infrastructure.database import Base
from clinic_booking.domain.doctors import models as doctor_models  # noqa: F401  registers Doctor and Clinic
import uuid
import enum


class AppointmentStatus(str, enum.Enum):
    """Appointment status enumeration"""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Statuses that occupy a seat in the slot; only cancel and expiry give it back
CAPACITY_HOLDING_STATUSES = (
    AppointmentStatus.PENDING,
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
    AppointmentStatus.COMPLETED,
)

ACTIVE_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
)

TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.EXPIRED,
)


class AppointmentType(str, enum.Enum):
    """Type of appointment"""
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"
    EMERGENCY = "emergency"
    TELEMEDICINE = "telemedicine"


class EventType(str, enum.Enum):
    """Appointment events exposed to notification and audit consumers"""
    CREATED = "created"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    COMPLETED = "completed"


class AvailabilitySlot(Base):
    """Time window at a clinic accepting up to ``capacity`` appointments"""
    __tablename__ = "availability_slots"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    doctor_id = Column(Uuid(as_uuid=True), ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False)
    clinic_id = Column(Uuid(as_uuid=True), ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False)

    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    capacity = Column(Integer, nullable=False, default=1)

    # Maintained by CapacityReconciler only
    booked_count = Column(Integer, nullable=False, default=0)
    is_available = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    doctor = relationship("Doctor")
    clinic = relationship("Clinic")
    appointments = relationship("Appointment", back_populates="slot")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint('doctor_id', 'clinic_id', 'date', 'start_time', name='unique_slot_start'),
        CheckConstraint('start_time < end_time', name='check_slot_time_order'),
        CheckConstraint('capacity >= 1', name='check_slot_capacity'),
        CheckConstraint('booked_count >= 0', name='check_slot_booked_count'),
        Index('idx_slots_doctor_date', 'doctor_id', 'date'),
    )

    @property
    def remaining_capacity(self) -> int:
        return max(self.capacity - self.booked_count, 0)


class Appointment(Base):
    """Appointment of one patient against one availability slot"""
    __tablename__ = "appointments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slot_id = Column(Uuid(as_uuid=True), ForeignKey("availability_slots.id"), nullable=False, index=True)

    # Denormalized from the slot for querying
    doctor_id = Column(Uuid(as_uuid=True), ForeignKey("doctors.id"), nullable=False, index=True)
    clinic_id = Column(Uuid(as_uuid=True), ForeignKey("clinics.id"), nullable=False)
    patient_id = Column(Uuid(as_uuid=True), nullable=False, index=True)

    appointment_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # Type and status
    appointment_type = Column(Enum(AppointmentType), nullable=False, default=AppointmentType.CONSULTATION)
    status = Column(Enum(AppointmentStatus), nullable=False, default=AppointmentStatus.SCHEDULED, index=True)

    notes = Column(Text)
    fee_charged = Column(Integer, nullable=False, default=0)
    rating_eligible = Column(Boolean, nullable=False, default=False)
    cancelled_reason = Column(Text)

    # Audit
    created_at = Column(DateTime, default=func.now(), index=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    status_changed_at = Column(DateTime)
    version = Column(Integer, nullable=False, default=1)

    # Relationships
    slot = relationship("AvailabilitySlot", back_populates="appointments")
    doctor = relationship("Doctor")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint('start_time < end_time', name='check_appointment_time_order'),
        Index('idx_appointments_patient_date', 'patient_id', 'appointment_date'),
    )


class AppointmentEvent(Base):
    """Outbox row written in the same transaction as the status change"""
    __tablename__ = "appointment_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_type = Column(Enum(EventType), nullable=False)
    appointment_id = Column(Uuid(as_uuid=True), ForeignKey("appointments.id"), nullable=False, index=True)
    doctor_id = Column(Uuid(as_uuid=True), nullable=False)
    patient_id = Column(Uuid(as_uuid=True), nullable=False)
    slot_id = Column(Uuid(as_uuid=True), nullable=False)
    occurred_at = Column(DateTime, nullable=False)

    delivered_at = Column(DateTime, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(String(500))
