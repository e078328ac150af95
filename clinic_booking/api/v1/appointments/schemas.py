"""
Appointments API Schemas

Pydantic models for appointment and availability API requests and responses.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional, List
from datetime import datetime, date, time
import uuid
from clinic_booking.domain.appointments.models import AppointmentStatus, AppointmentType


# ==================== Availability Schemas ====================

class SlotCreate(BaseModel):
    """Schema for publishing an availability slot"""
    doctor_id: uuid.UUID
    clinic_id: uuid.UUID
    date: date
    start_time: time
    end_time: time
    capacity: int = Field(1, ge=1, le=50)

    @model_validator(mode="after")
    def validate_time_order(self):
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class SlotWindow(BaseModel):
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def validate_time_order(self):
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class SlotBulkCreate(BaseModel):
    """Several slots of one day, published together"""
    doctor_id: uuid.UUID
    clinic_id: uuid.UUID
    date: date
    windows: List[SlotWindow] = Field(..., min_length=1, max_length=48)
    capacity: int = Field(1, ge=1, le=50)


class SlotDayCreate(BaseModel):
    """A working day cut into equal slots"""
    doctor_id: uuid.UUID
    clinic_id: uuid.UUID
    date: date
    capacity: int = Field(1, ge=1, le=50)
    start_hour: int = Field(9, ge=0, le=22)
    end_hour: int = Field(17, ge=1, le=23)
    slot_minutes: int = Field(30, ge=5, le=240)
    break_hours: List[int] = Field(default_factory=lambda: [12])


class SlotCapacityUpdate(BaseModel):
    capacity: int = Field(..., ge=1, le=50)


class SlotResponse(BaseModel):
    """Slot annotated with availability"""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    doctor_id: uuid.UUID
    clinic_id: uuid.UUID
    date: date
    start_time: time
    end_time: time
    capacity: int
    booked_count: int
    remaining_capacity: int
    is_available: bool


class SlotVerificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    slot_id: uuid.UUID
    capacity: int
    booked_count: int
    holding_count: int
    is_available: bool
    counter_consistent: bool
    flag_consistent: bool
    within_capacity: bool
    ok: bool


# ==================== Appointment Schemas ====================

class AppointmentCreate(BaseModel):
    """Schema for reserving a slot"""
    patient_id: uuid.UUID
    slot_id: uuid.UUID
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    notes: Optional[str] = None


class AppointmentCancel(BaseModel):
    """Schema for cancelling appointment"""
    reason: Optional[str] = Field(None, max_length=500)


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    slot_id: uuid.UUID
    doctor_id: uuid.UUID
    clinic_id: uuid.UUID
    patient_id: uuid.UUID
    appointment_date: date
    start_time: time
    end_time: time
    appointment_type: AppointmentType
    status: AppointmentStatus
    notes: Optional[str] = None
    fee_charged: int
    rating_eligible: bool
    cancelled_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    status_changed_at: Optional[datetime] = None


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list"""
    items: List[AppointmentResponse]
    total: int
    page: int
    limit: int
    pages: int
