"""
Doctors Service Layer

Business logic for doctor profiles, clinic links and reviews, and the
recomputation of every value derived from them (onboarding flags, rating).
"""

from typing import Optional, Dict, Any, Callable, List
from datetime import datetime, date
from decimal import Decimal, ROUND_HALF_UP
import logging
import uuid

from sqlalchemy.exc import IntegrityError

from clinic_booking.core.exceptions import (
    BusinessLogicError, ConflictError, DoctorNotFound, NotFoundError, ValidationError
)
from clinic_booking.domain.appointments.models import AppointmentStatus
from clinic_booking.domain.appointments.repository import AppointmentRepository
from clinic_booking.domain.doctors.models import Doctor, Clinic, DoctorClinic, Review
from clinic_booking.domain.doctors.repository import (
    DoctorRepository, ClinicRepository, ReviewRepository
)

logger = logging.getLogger(__name__)

# Fields that can be written through update_profile
PROFILE_FIELDS = ("full_name", "specialty", "experience_years", "license_number", "bio", "fee")

# Profile fields backed by NOT NULL columns
REQUIRED_PROFILE_FIELDS = ("full_name", "fee")

# Never writable from outside the derived-flag engine
DERIVED_FIELDS = (
    "profile_completed", "clinics_added", "availability_created", "rating", "review_count"
)


def _filled(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


def is_profile_complete(doctor: Doctor) -> bool:
    return (
        _filled(doctor.specialty)
        and doctor.experience_years is not None
        and _filled(doctor.license_number)
        and _filled(doctor.bio)
    )


class DerivedFlagEngine:
    """
    Recomputes a doctor's derived fields from current facts.

    Each method is called by the service that changed the underlying fact,
    in the same transaction, and only flushes. Results never depend on the
    previous value of the flag.
    """

    def __init__(self, db):
        self.db = db
        self.doctor_repo = DoctorRepository(db)
        self.review_repo = ReviewRepository(db)

    def _doctor(self, doctor_id: uuid.UUID) -> Doctor:
        doctor = self.doctor_repo.get_by_id(doctor_id)
        if doctor is None:
            raise DoctorNotFound(doctor_id)
        return doctor

    def on_profile_changed(self, doctor_id: uuid.UUID) -> bool:
        doctor = self._doctor(doctor_id)
        doctor.profile_completed = bool(is_profile_complete(doctor))
        self.db.flush()
        return doctor.profile_completed

    def on_clinic_link_changed(self, doctor_id: uuid.UUID) -> bool:
        doctor = self._doctor(doctor_id)
        self.db.flush()
        doctor.clinics_added = bool(self.doctor_repo.has_clinic_link(doctor_id))
        self.db.flush()
        return doctor.clinics_added

    def on_availability_changed(self, doctor_id: uuid.UUID) -> bool:
        doctor = self._doctor(doctor_id)
        self.db.flush()
        doctor.availability_created = bool(self.doctor_repo.has_availability(doctor_id))
        self.db.flush()
        return doctor.availability_created

    def on_review_changed(self, doctor_id: uuid.UUID) -> Decimal:
        doctor = self._doctor(doctor_id)
        self.db.flush()
        average, count = self.review_repo.verified_stats(doctor_id)
        if average is None:
            doctor.rating = Decimal("0.00")
        else:
            doctor.rating = Decimal(str(average)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        doctor.review_count = count
        self.db.flush()
        return doctor.rating

    def recompute_all(self, doctor_id: uuid.UUID) -> Dict[str, Any]:
        """Backfill every derived field for one doctor"""
        self.on_profile_changed(doctor_id)
        self.on_clinic_link_changed(doctor_id)
        self.on_availability_changed(doctor_id)
        self.on_review_changed(doctor_id)
        return self.onboarding_status(doctor_id)

    def onboarding_status(self, doctor_id: uuid.UUID) -> Dict[str, Any]:
        doctor = self._doctor(doctor_id)
        return {
            "doctor_id": doctor.id,
            "profile_completed": doctor.profile_completed,
            "clinics_added": doctor.clinics_added,
            "availability_created": doctor.availability_created,
            "is_onboarded": doctor.is_onboarded,
        }


class DoctorService:
    """Service layer for doctor profile and clinic link management"""

    def __init__(self, db, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock
        self.doctor_repo = DoctorRepository(db)
        self.clinic_repo = ClinicRepository(db)
        self.flags = DerivedFlagEngine(db)

    def _commit(self, operation: str) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.info(f"Integrity error during {operation}: {e.orig}")
            raise ConflictError(
                message="Conflicts with an existing record",
                details={"operation": operation},
                error_code="DUPLICATE_RECORD"
            )

    def create_doctor(self, doctor_data: dict) -> Doctor:
        """Register a doctor; derived fields are computed, not accepted"""
        data = {k: v for k, v in doctor_data.items() if k not in DERIVED_FIELDS}
        now = self.clock()
        data.setdefault("created_at", now)
        data.setdefault("updated_at", now)
        doctor = self.doctor_repo.create(data)
        self.flags.recompute_all(doctor.id)
        self._commit("create doctor")
        logger.info(f"Doctor {doctor.id} created")
        return doctor

    def get_doctor(self, doctor_id: uuid.UUID) -> Doctor:
        doctor = self.doctor_repo.get_by_id(doctor_id)
        if not doctor:
            raise DoctorNotFound(doctor_id)
        return doctor

    def update_profile(self, doctor_id: uuid.UUID, update_data: dict) -> Doctor:
        """Update profile fields and recompute profile_completed"""
        rejected = sorted(set(update_data) - set(PROFILE_FIELDS))
        if rejected:
            raise ValidationError(
                message="Only profile fields can be updated",
                details={"fields": rejected},
                error_code="FIELD_NOT_WRITABLE"
            )
        cleared = sorted(k for k in REQUIRED_PROFILE_FIELDS if k in update_data and update_data[k] is None)
        if cleared:
            raise ValidationError(
                message="Required profile fields cannot be cleared",
                details={"fields": cleared},
                error_code="FIELD_REQUIRED"
            )

        doctor = self.get_doctor(doctor_id)
        for key, value in update_data.items():
            setattr(doctor, key, value)
        doctor.updated_at = self.clock()

        completed = self.flags.on_profile_changed(doctor_id)
        self._commit("update profile")
        logger.info(f"Doctor {doctor_id} profile updated, profile_completed={completed}")
        return doctor

    def set_verified(self, doctor_id: uuid.UUID, verified: bool = True) -> Doctor:
        """Admin verification gate for booking"""
        doctor = self.get_doctor(doctor_id)
        doctor.verified = verified
        doctor.updated_at = self.clock()
        self._commit("verify doctor")
        logger.info(f"Doctor {doctor_id} verified={verified}")
        return doctor

    def set_active(self, doctor_id: uuid.UUID, active: bool) -> Doctor:
        doctor = self.get_doctor(doctor_id)
        doctor.is_active = active
        doctor.updated_at = self.clock()
        self._commit("activate doctor")
        return doctor

    def create_clinic(self, clinic_data: dict) -> Clinic:
        now = self.clock()
        clinic = self.clinic_repo.create({**clinic_data, "created_at": now, "updated_at": now})
        self._commit("create clinic")
        return clinic

    def link_clinic(
        self,
        doctor_id: uuid.UUID,
        clinic_id: uuid.UUID,
        is_primary: bool = False,
        consultation_fee: Optional[int] = None
    ) -> DoctorClinic:
        """Link a doctor to a clinic and recompute clinics_added"""
        self.get_doctor(doctor_id)
        if not self.clinic_repo.get_by_id(clinic_id):
            raise NotFoundError(
                message="Clinic not found",
                details={"clinic_id": str(clinic_id)},
                error_code="CLINIC_NOT_FOUND"
            )
        if self.clinic_repo.get_link(doctor_id, clinic_id):
            raise ConflictError(
                message="Doctor is already linked to this clinic",
                details={"doctor_id": str(doctor_id), "clinic_id": str(clinic_id)},
                error_code="CLINIC_ALREADY_LINKED"
            )

        link = self.clinic_repo.create_link({
            "doctor_id": doctor_id,
            "clinic_id": clinic_id,
            "is_primary": is_primary,
            "consultation_fee": consultation_fee,
            "created_at": self.clock(),
        })
        self.flags.on_clinic_link_changed(doctor_id)
        self._commit("link clinic")
        logger.info(f"Doctor {doctor_id} linked to clinic {clinic_id}")
        return link

    def unlink_clinic(self, doctor_id: uuid.UUID, clinic_id: uuid.UUID) -> bool:
        """Remove a clinic link and recompute clinics_added"""
        link = self.clinic_repo.get_link(doctor_id, clinic_id)
        if not link:
            raise NotFoundError(
                message="Doctor is not linked to this clinic",
                details={"doctor_id": str(doctor_id), "clinic_id": str(clinic_id)},
                error_code="CLINIC_LINK_NOT_FOUND"
            )
        self.clinic_repo.delete_link(link)
        self.flags.on_clinic_link_changed(doctor_id)
        self._commit("unlink clinic")
        logger.info(f"Doctor {doctor_id} unlinked from clinic {clinic_id}")
        return True

    def onboarding_status(self, doctor_id: uuid.UUID) -> Dict[str, Any]:
        return self.flags.onboarding_status(doctor_id)

    def get_doctor_stats(self, doctor_id: uuid.UUID, today: Optional[date] = None) -> Dict[str, Any]:
        """Appointment counts plus the verified-review aggregate"""
        doctor = self.get_doctor(doctor_id)
        today = today or self.clock().date()
        appointments = AppointmentRepository(self.db)
        return {
            "doctor_id": doctor.id,
            "total_appointments": appointments.count(doctor_id=doctor_id),
            "completed_appointments": appointments.count(
                doctor_id=doctor_id, status=AppointmentStatus.COMPLETED
            ),
            "this_month_appointments": appointments.count(doctor_id=doctor_id, date_from=today.replace(day=1)),
            "average_rating": doctor.rating,
            "total_reviews": doctor.review_count,
        }

    def recompute_all(self) -> int:
        """Backfill derived fields for every doctor"""
        ids = self.doctor_repo.all_ids()
        for doctor_id in ids:
            self.flags.recompute_all(doctor_id)
        self.db.commit()
        return len(ids)


class ReviewService:
    """Service layer for patient reviews and the rating aggregate"""

    def __init__(self, db, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock
        self.review_repo = ReviewRepository(db)
        self.doctor_repo = DoctorRepository(db)
        self.flags = DerivedFlagEngine(db)

    def submit_review(
        self,
        appointment_id: uuid.UUID,
        patient_id: uuid.UUID,
        rating: int,
        comment: Optional[str] = None
    ) -> Review:
        """Review a completed appointment; one review per appointment"""
        self._validate_rating(rating)

        appointment = AppointmentRepository(self.db).get_by_id(appointment_id)
        if appointment is None or appointment.patient_id != patient_id:
            raise NotFoundError(
                message="Appointment not found for this patient",
                details={"appointment_id": str(appointment_id)},
                error_code="APPOINTMENT_NOT_FOUND"
            )
        if appointment.status != AppointmentStatus.COMPLETED or not appointment.rating_eligible:
            raise BusinessLogicError(
                message="Only completed appointments can be reviewed",
                details={"appointment_id": str(appointment_id), "status": appointment.status.value},
                error_code="REVIEW_NOT_ALLOWED"
            )
        if self.review_repo.get_by_appointment_id(appointment_id):
            raise ConflictError(
                message="This appointment has already been reviewed",
                details={"appointment_id": str(appointment_id)},
                error_code="REVIEW_EXISTS"
            )

        now = self.clock()
        review = self.review_repo.create({
            "appointment_id": appointment_id,
            "doctor_id": appointment.doctor_id,
            "patient_id": patient_id,
            "rating": rating,
            "comment": comment,
            "is_verified": False,
            "created_at": now,
            "updated_at": now,
        })
        self.flags.on_review_changed(appointment.doctor_id)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(
                message="This appointment has already been reviewed",
                details={"appointment_id": str(appointment_id)},
                error_code="REVIEW_EXISTS"
            )
        return review

    def get_review(self, review_id: uuid.UUID) -> Review:
        review = self.review_repo.get_by_id(review_id)
        if not review:
            raise NotFoundError(
                message="Review not found",
                details={"review_id": str(review_id)},
                error_code="REVIEW_NOT_FOUND"
            )
        return review

    def list_reviews(self, doctor_id: uuid.UUID, verified_only: bool = True) -> List[Review]:
        if not self.doctor_repo.get_by_id(doctor_id):
            raise DoctorNotFound(doctor_id)
        return self.review_repo.get_by_doctor_id(doctor_id, verified_only=verified_only)

    def verify_review(self, review_id: uuid.UUID, verified: bool = True) -> Review:
        review = self.get_review(review_id)
        review.is_verified = verified
        review.updated_at = self.clock()
        self.flags.on_review_changed(review.doctor_id)
        self.db.commit()
        logger.info(f"Review {review_id} verified={verified}")
        return review

    def update_review(
        self,
        review_id: uuid.UUID,
        rating: Optional[int] = None,
        comment: Optional[str] = None
    ) -> Review:
        review = self.get_review(review_id)
        if rating is not None:
            self._validate_rating(rating)
            review.rating = rating
        if comment is not None:
            review.comment = comment
        review.updated_at = self.clock()
        self.flags.on_review_changed(review.doctor_id)
        self.db.commit()
        return review

    def delete_review(self, review_id: uuid.UUID) -> bool:
        review = self.get_review(review_id)
        doctor_id = review.doctor_id
        self.review_repo.delete(review)
        self.flags.on_review_changed(doctor_id)
        self.db.commit()
        logger.info(f"Review {review_id} deleted")
        return True

    @staticmethod
    def _validate_rating(rating: int) -> None:
        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
            raise ValidationError(
                message="Rating must be an integer between 1 and 5",
                details={"rating": rating},
                error_code="INVALID_RATING"
            )
