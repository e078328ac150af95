"""
Appointments API Routes

API endpoints for reservations, appointment lifecycle and availability.
"""

from fastapi import APIRouter, Depends, status, Query
from typing import List, Optional
from datetime import date
import uuid
import math

from clinic_booking.infrastructure.database import get_db
from clinic_booking.domain.appointments.service import AppointmentService, AvailabilityService
from clinic_booking.domain.appointments.models import AppointmentStatus, AppointmentType
from clinic_booking.api.v1.appointments.schemas import (
    AppointmentCreate, AppointmentCancel, AppointmentResponse, AppointmentListResponse,
    SlotCreate, SlotBulkCreate, SlotDayCreate, SlotCapacityUpdate, SlotResponse, SlotVerificationResponse
)

router = APIRouter()
availability_router = APIRouter()


# ==================== Appointment Endpoints ====================

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    appointment_data: AppointmentCreate,
    db = Depends(get_db)
):
    """Reserve a seat in an availability slot"""
    service = AppointmentService(db)
    return service.reserve(
        patient_id=appointment_data.patient_id,
        slot_id=appointment_data.slot_id,
        appointment_type=appointment_data.appointment_type,
        notes=appointment_data.notes
    )


@router.get("", response_model=AppointmentListResponse)
def list_appointments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    patient_id: Optional[uuid.UUID] = None,
    doctor_id: Optional[uuid.UUID] = None,
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    appointment_type: Optional[AppointmentType] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db = Depends(get_db)
):
    """List appointments with filtering and pagination"""
    service = AppointmentService(db)
    skip = (page - 1) * limit

    appointments, total = service.list_appointments(
        skip=skip,
        limit=limit,
        patient_id=patient_id,
        doctor_id=doctor_id,
        status=status_filter,
        appointment_type=appointment_type,
        date_from=date_from,
        date_to=date_to
    )

    return AppointmentListResponse(
        items=appointments,
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total > 0 else 1
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: uuid.UUID,
    db = Depends(get_db)
):
    """Get appointment by ID"""
    return AppointmentService(db).get_appointment(appointment_id)


@router.post("/{appointment_id}/confirm", response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: uuid.UUID,
    db = Depends(get_db)
):
    """Confirm an appointment"""
    return AppointmentService(db).confirm(appointment_id)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: uuid.UUID,
    cancel_data: Optional[AppointmentCancel] = None,
    db = Depends(get_db)
):
    """Cancel an appointment"""
    reason = cancel_data.reason if cancel_data else None
    return AppointmentService(db).cancel(appointment_id, reason=reason)


@router.post("/{appointment_id}/start", response_model=AppointmentResponse)
def start_appointment(
    appointment_id: uuid.UUID,
    db = Depends(get_db)
):
    """Start the consultation"""
    return AppointmentService(db).start(appointment_id)


@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: uuid.UUID,
    db = Depends(get_db)
):
    """Complete an appointment"""
    return AppointmentService(db).complete(appointment_id)


# ==================== Availability Endpoints ====================

@availability_router.get("", response_model=List[SlotResponse])
def list_availability(
    doctor_id: uuid.UUID,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    only_available: bool = Query(False),
    db = Depends(get_db)
):
    """List a doctor's slots with remaining capacity"""
    service = AvailabilityService(db)
    return service.list_availability(doctor_id, date_from, date_to, only_available)


@availability_router.post("/slots", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def publish_slot(
    slot_data: SlotCreate,
    db = Depends(get_db)
):
    """Publish an availability slot"""
    service = AvailabilityService(db)
    return service.publish_slot(
        doctor_id=slot_data.doctor_id,
        clinic_id=slot_data.clinic_id,
        slot_date=slot_data.date,
        start_time=slot_data.start_time,
        end_time=slot_data.end_time,
        capacity=slot_data.capacity
    )


@availability_router.post("/slots/bulk", response_model=List[SlotResponse], status_code=status.HTTP_201_CREATED)
def publish_slots(
    slot_data: SlotBulkCreate,
    db = Depends(get_db)
):
    """Publish several slots of one day; all or none are created"""
    service = AvailabilityService(db)
    return service.publish_slots(
        doctor_id=slot_data.doctor_id,
        clinic_id=slot_data.clinic_id,
        slot_date=slot_data.date,
        windows=[(window.start_time, window.end_time) for window in slot_data.windows],
        capacity=slot_data.capacity
    )


@availability_router.post("/slots/day", response_model=List[SlotResponse], status_code=status.HTTP_201_CREATED)
def publish_day(
    day_data: SlotDayCreate,
    db = Depends(get_db)
):
    """Publish a working day cut into equal slots"""
    service = AvailabilityService(db)
    return service.publish_day(
        doctor_id=day_data.doctor_id,
        clinic_id=day_data.clinic_id,
        slot_date=day_data.date,
        capacity=day_data.capacity,
        start_hour=day_data.start_hour,
        end_hour=day_data.end_hour,
        slot_minutes=day_data.slot_minutes,
        break_hours=tuple(day_data.break_hours)
    )


@availability_router.patch("/slots/{slot_id}", response_model=SlotResponse)
def update_slot_capacity(
    slot_id: uuid.UUID,
    update_data: SlotCapacityUpdate,
    db = Depends(get_db)
):
    """Resize a slot; refused below the seats already booked"""
    return AvailabilityService(db).update_slot_capacity(slot_id, update_data.capacity)


@availability_router.delete("/slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_slot(
    slot_id: uuid.UUID,
    db = Depends(get_db)
):
    """Remove an unbooked slot"""
    AvailabilityService(db).remove_slot(slot_id)


@availability_router.get("/slots/{slot_id}/verify", response_model=SlotVerificationResponse)
def verify_slot(
    slot_id: uuid.UUID,
    db = Depends(get_db)
):
    """Check the slot's fill counter against its appointments"""
    result = AvailabilityService(db).verify_slot(slot_id)
    return SlotVerificationResponse.model_validate(result)
