from typing import Dict, Any, Optional
from fastapi import status
from pydantic import BaseModel
import logging

logger = logging.getLogger(__name__)


class BaseCustomException(Exception):
    """Base class for custom exceptions"""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.error_code = error_code
        super().__init__(self.message)


class ValidationError(BaseCustomException):
    """Exception for validation errors"""

    def __init__(
        self,
        message: str = "Validation failed",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            error_code=error_code or "VALIDATION_ERROR"
        )


class NotFoundError(BaseCustomException):
    """Exception for resource not found errors"""

    def __init__(
        self,
        message: str = "Resource not found",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details,
            error_code=error_code or "NOT_FOUND_ERROR"
        )


class ConflictError(BaseCustomException):
    """Exception for conflict errors"""

    def __init__(
        self,
        message: str = "Resource conflict",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
            error_code=error_code or "CONFLICT_ERROR"
        )


class BusinessLogicError(BaseCustomException):
    """Exception for business logic errors"""

    def __init__(
        self,
        message: str = "Business logic error",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
            error_code=error_code or "BUSINESS_LOGIC_ERROR"
        )


class DatabaseError(BaseCustomException):
    """Exception for database errors"""

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
            error_code=error_code or "DATABASE_ERROR"
        )


# ==================== Reservation errors ====================

class ReservationError(BaseCustomException):
    """Marker base for every failure ``reserve`` can report"""


class SlotNotFound(NotFoundError, ReservationError):
    def __init__(self, slot_id: Any):
        super().__init__(
            message="Availability slot not found",
            details={"slot_id": str(slot_id)},
            error_code="SLOT_NOT_FOUND"
        )


class SlotInPast(BusinessLogicError, ReservationError):
    def __init__(self, slot_id: Any):
        super().__init__(
            message="This time slot has already started",
            details={"slot_id": str(slot_id)},
            error_code="SLOT_IN_PAST"
        )


class DoctorNotVerified(BusinessLogicError, ReservationError):
    def __init__(self, doctor_id: Any, reason: str = "Cannot book with an unverified doctor"):
        super().__init__(
            message=reason,
            details={"doctor_id": str(doctor_id)},
            error_code="DOCTOR_NOT_VERIFIED"
        )


class SlotFull(ConflictError, ReservationError):
    """Lost the race for the last seat; retry against a different slot"""

    retryable = True

    def __init__(self, slot_id: Any, capacity: int):
        super().__init__(
            message="This time slot is fully booked",
            details={"slot_id": str(slot_id), "capacity": capacity},
            error_code="SLOT_FULL"
        )


class PatientDoubleBooked(ConflictError, ReservationError):
    def __init__(self, patient_id: Any, conflicting_appointment_id: Any):
        super().__init__(
            message="Patient already holds an appointment overlapping this time",
            details={
                "patient_id": str(patient_id),
                "conflicting_appointment_id": str(conflicting_appointment_id),
            },
            error_code="PATIENT_DOUBLE_BOOKED"
        )


class OutOfBookingHorizon(ValidationError, ReservationError):
    def __init__(self, slot_date: Any, horizon_days: int):
        super().__init__(
            message=f"Appointments can only be booked within the next {horizon_days} days",
            details={"date": str(slot_date), "horizon_days": horizon_days},
            error_code="OUT_OF_BOOKING_HORIZON"
        )


class SlotLockTimeout(ConflictError, ReservationError):
    retryable = True

    def __init__(self, slot_id: Any, timeout: float):
        super().__init__(
            message="Slot is busy, please try again",
            details={"slot_id": str(slot_id), "timeout_seconds": timeout},
            error_code="SLOT_LOCK_TIMEOUT"
        )


class ConcurrentModification(ConflictError, ReservationError):
    """Another writer committed first; the caller decides whether to retry"""

    retryable = True

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            message=f"{resource} was modified concurrently",
            details={"resource": resource, "id": str(resource_id)},
            error_code="CONCURRENT_MODIFICATION"
        )


# ==================== Lifecycle errors ====================

class AppointmentNotFound(NotFoundError):
    def __init__(self, appointment_id: Any):
        super().__init__(
            message="Appointment not found",
            details={"appointment_id": str(appointment_id)},
            error_code="APPOINTMENT_NOT_FOUND"
        )


class DoctorNotFound(NotFoundError):
    def __init__(self, doctor_id: Any):
        super().__init__(
            message="Doctor not found",
            details={"doctor_id": str(doctor_id)},
            error_code="DOCTOR_NOT_FOUND"
        )


class InvalidTransition(ConflictError):
    def __init__(self, appointment_id: Any, from_status: str, to_status: str):
        super().__init__(
            message=f"Cannot move appointment from {from_status} to {to_status}",
            details={
                "appointment_id": str(appointment_id),
                "from_status": from_status,
                "to_status": to_status,
            },
            error_code="INVALID_TRANSITION"
        )


class CapacityInvariantViolation(BaseCustomException):
    """Committed state would exceed slot capacity. Never expected."""

    def __init__(self, slot_id: Any, booked: int, capacity: int):
        super().__init__(
            message="Slot capacity invariant violated",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"slot_id": str(slot_id), "booked": booked, "capacity": capacity},
            error_code="CAPACITY_INVARIANT_VIOLATION"
        )


# Response models for errors
class ErrorResponse(BaseModel):
    """Standard error response model"""
    error: str
    message: str
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    retryable: bool = False
    timestamp: Optional[str] = None


def create_error_response(exception: BaseCustomException) -> Dict[str, Any]:
    """Create standardized error response"""
    from datetime import datetime

    response = {
        "error": exception.__class__.__name__,
        "message": exception.message,
        "error_code": exception.error_code,
        "retryable": exception.retryable,
        "timestamp": datetime.utcnow().isoformat(),
    }

    if exception.details:
        response["details"] = exception.details

    return response


def handle_database_error(error: Exception, operation: str = "database operation") -> DatabaseError:
    """Handle database errors and convert to DatabaseError"""
    logger.error(f"Database error during {operation}: {error}")

    error_message = "Database operation failed"
    if "connection" in str(error).lower():
        error_message = "Database connection failed"
    elif "timeout" in str(error).lower() or "locked" in str(error).lower():
        error_message = "Database operation timed out"
    elif "constraint" in str(error).lower():
        error_message = "Database constraint violation"

    return DatabaseError(
        message=error_message,
        details={"operation": operation, "original_error": str(error)},
        error_code="DATABASE_OPERATION_ERROR"
    )
