"""
Doctors Domain Models

Implements the database models for:
- Doctor profiles with derived onboarding flags and rating aggregate
- Clinics and doctor-clinic links
- Patient reviews
"""

from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, Integer, Numeric,
    Text, Uuid, CheckConstraint, UniqueConstraint
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from clinic_booking.infrastructure.database import Base
import uuid


class Doctor(Base):
    """Doctor profile. Onboarding flags and rating are recomputed, never authored."""
    __tablename__ = "doctors"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    full_name = Column(String(150), nullable=False, default="")

    # Profile fields that feed profile_completed
    specialty = Column(String(100))
    experience_years = Column(Integer)
    license_number = Column(String(50), unique=True)
    bio = Column(Text)

    fee = Column(Integer, nullable=False, default=0)  # smallest currency unit
    verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # Derived onboarding flags
    profile_completed = Column(Boolean, nullable=False, default=False)
    clinics_added = Column(Boolean, nullable=False, default=False)
    availability_created = Column(Boolean, nullable=False, default=False)

    # Derived rating aggregate
    rating = Column(Numeric(3, 2), nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    clinic_links = relationship("DoctorClinic", back_populates="doctor", cascade="all, delete-orphan")
    reviews = relationship("Review", back_populates="doctor")

    __table_args__ = (
        CheckConstraint('rating >= 0 AND rating <= 5', name='check_doctor_rating'),
        CheckConstraint('fee >= 0', name='check_doctor_fee'),
    )

    @property
    def is_onboarded(self) -> bool:
        return bool(self.profile_completed and self.clinics_added and self.availability_created)


class Clinic(Base):
    """Clinic where doctors publish availability"""
    __tablename__ = "clinics"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    address = Column(Text, nullable=False)
    phone = Column(String(30))

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    doctor_links = relationship("DoctorClinic", back_populates="clinic")


class DoctorClinic(Base):
    """Link between a doctor and a clinic they practice at"""
    __tablename__ = "doctor_clinics"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    doctor_id = Column(Uuid(as_uuid=True), ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    clinic_id = Column(Uuid(as_uuid=True), ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False)
    is_primary = Column(Boolean, default=False)
    consultation_fee = Column(Integer)
    created_at = Column(DateTime, default=func.now())

    doctor = relationship("Doctor", back_populates="clinic_links")
    clinic = relationship("Clinic", back_populates="doctor_links")

    __table_args__ = (
        UniqueConstraint('doctor_id', 'clinic_id', name='unique_doctor_clinic'),
    )


class Review(Base):
    """Patient review of a completed appointment"""
    __tablename__ = "reviews"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    appointment_id = Column(Uuid(as_uuid=True), ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, unique=True)
    doctor_id = Column(Uuid(as_uuid=True), ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    patient_id = Column(Uuid(as_uuid=True), nullable=False)

    rating = Column(Integer, nullable=False)
    comment = Column(Text)
    is_verified = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    doctor = relationship("Doctor", back_populates="reviews")

    __table_args__ = (
        CheckConstraint('rating >= 1 AND rating <= 5', name='check_review_rating'),
    )
