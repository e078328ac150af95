# Doctors domain module
from clinic_booking.domain.doctors.models import (
    Doctor,
    Clinic,
    DoctorClinic,
    Review,
)

__all__ = [
    "Doctor",
    "Clinic",
    "DoctorClinic",
    "Review",
]
