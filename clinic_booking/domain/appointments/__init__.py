# Appointments domain module
from clinic_booking.domain.appointments.models import (
    Appointment,
    AppointmentEvent,
    AppointmentStatus,
    AppointmentType,
    AvailabilitySlot,
    EventType,
    ACTIVE_STATUSES,
    CAPACITY_HOLDING_STATUSES,
    TERMINAL_STATUSES,
)

__all__ = [
    "Appointment",
    "AppointmentEvent",
    "AppointmentStatus",
    "AppointmentType",
    "AvailabilitySlot",
    "EventType",
    "ACTIVE_STATUSES",
    "CAPACITY_HOLDING_STATUSES",
    "TERMINAL_STATUSES",
]
