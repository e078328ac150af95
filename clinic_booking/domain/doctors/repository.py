"""
Doctors Repository Layer

Provides data access operations for doctors, clinics, clinic links and reviews.
Repositories flush; the owning service commits.
"""

from typing import Optional, List, Tuple
from sqlalchemy import and_, func, exists
import uuid

from clinic_booking.domain.appointments.models import AvailabilitySlot
from clinic_booking.domain.doctors.models import Doctor, Clinic, DoctorClinic, Review


class DoctorRepository:
    """Repository for doctor data access operations"""

    def __init__(self, db):
        self.db = db

    def create(self, doctor_data: dict) -> Doctor:
        """Create a new doctor"""
        doctor = Doctor(**doctor_data)
        self.db.add(doctor)
        self.db.flush()
        return doctor

    def get_by_id(self, doctor_id: uuid.UUID) -> Optional[Doctor]:
        """Get doctor by ID"""
        return self.db.query(Doctor).filter(Doctor.id == doctor_id).first()

    def get_all(self, skip: int = 0, limit: int = 100) -> List[Doctor]:
        return self.db.query(Doctor).order_by(Doctor.created_at).offset(skip).limit(limit).all()

    def all_ids(self) -> List[uuid.UUID]:
        return [row[0] for row in self.db.query(Doctor.id).all()]

    def has_clinic_link(self, doctor_id: uuid.UUID) -> bool:
        return self.db.query(
            exists().where(DoctorClinic.doctor_id == doctor_id)
        ).scalar()

    def has_availability(self, doctor_id: uuid.UUID) -> bool:
        return self.db.query(
            exists().where(AvailabilitySlot.doctor_id == doctor_id)
        ).scalar()


class ClinicRepository:
    """Repository for clinics and doctor-clinic links"""

    def __init__(self, db):
        self.db = db

    def create(self, clinic_data: dict) -> Clinic:
        """Create a new clinic"""
        clinic = Clinic(**clinic_data)
        self.db.add(clinic)
        self.db.flush()
        return clinic

    def get_by_id(self, clinic_id: uuid.UUID) -> Optional[Clinic]:
        return self.db.query(Clinic).filter(Clinic.id == clinic_id).first()

    def get_link(self, doctor_id: uuid.UUID, clinic_id: uuid.UUID) -> Optional[DoctorClinic]:
        return self.db.query(DoctorClinic).filter(
            and_(
                DoctorClinic.doctor_id == doctor_id,
                DoctorClinic.clinic_id == clinic_id
            )
        ).first()

    def create_link(self, link_data: dict) -> DoctorClinic:
        link = DoctorClinic(**link_data)
        self.db.add(link)
        self.db.flush()
        return link

    def delete_link(self, link: DoctorClinic) -> None:
        self.db.delete(link)
        self.db.flush()


class ReviewRepository:
    """Repository for review data access operations"""

    def __init__(self, db):
        self.db = db

    def create(self, review_data: dict) -> Review:
        """Create a new review"""
        review = Review(**review_data)
        self.db.add(review)
        self.db.flush()
        return review

    def get_by_id(self, review_id: uuid.UUID) -> Optional[Review]:
        return self.db.query(Review).filter(Review.id == review_id).first()

    def get_by_appointment_id(self, appointment_id: uuid.UUID) -> Optional[Review]:
        return self.db.query(Review).filter(Review.appointment_id == appointment_id).first()

    def get_by_doctor_id(self, doctor_id: uuid.UUID, verified_only: bool = False) -> List[Review]:
        query = self.db.query(Review).filter(Review.doctor_id == doctor_id)
        if verified_only:
            query = query.filter(Review.is_verified == True)  # noqa: E712
        return query.order_by(Review.created_at.desc()).all()

    def verified_stats(self, doctor_id: uuid.UUID) -> Tuple[Optional[float], int]:
        """Average rating and count over verified reviews"""
        avg, count = self.db.query(
            func.avg(Review.rating),
            func.count(Review.id)
        ).filter(
            and_(
                Review.doctor_id == doctor_id,
                Review.is_verified == True  # noqa: E712
            )
        ).one()
        return (float(avg) if avg is not None else None), int(count or 0)

    def delete(self, review: Review) -> None:
        self.db.delete(review)
        self.db.flush()
