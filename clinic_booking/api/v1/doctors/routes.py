"""
Doctors API Routes

API endpoints for doctor profiles, clinic links, onboarding status and reviews.
"""

from fastapi import APIRouter, Depends, status
from typing import List, Optional
import uuid

from clinic_booking.infrastructure.database import get_db
from clinic_booking.domain.doctors.service import DoctorService, ReviewService
from clinic_booking.api.v1.doctors.schemas import (
    DoctorCreate, DoctorProfileUpdate, DoctorVerify, DoctorResponse,
    OnboardingStatusResponse, DoctorStatsResponse, ClinicCreate, ClinicResponse,
    ClinicLinkCreate, ClinicLinkResponse,
    ReviewCreate, ReviewVerify, ReviewResponse
)

router = APIRouter()
clinics_router = APIRouter()
reviews_router = APIRouter()


# ==================== Doctor Endpoints ====================

@router.post("", response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
def create_doctor(
    doctor_data: DoctorCreate,
    db = Depends(get_db)
):
    """Register a doctor"""
    return DoctorService(db).create_doctor(doctor_data.model_dump())


@router.get("/{doctor_id}", response_model=DoctorResponse)
def get_doctor(
    doctor_id: uuid.UUID,
    db = Depends(get_db)
):
    return DoctorService(db).get_doctor(doctor_id)


@router.patch("/{doctor_id}/profile", response_model=DoctorResponse)
def update_doctor_profile(
    doctor_id: uuid.UUID,
    update_data: DoctorProfileUpdate,
    db = Depends(get_db)
):
    """Update profile fields; profile_completed is recomputed"""
    return DoctorService(db).update_profile(doctor_id, update_data.model_dump(exclude_unset=True))


@router.post("/{doctor_id}/verify", response_model=DoctorResponse)
def verify_doctor(
    doctor_id: uuid.UUID,
    verify_data: Optional[DoctorVerify] = None,
    db = Depends(get_db)
):
    """Set the verification flag required for booking"""
    verified = verify_data.verified if verify_data else True
    return DoctorService(db).set_verified(doctor_id, verified)


@router.post(
    "/{doctor_id}/clinics/{clinic_id}",
    response_model=ClinicLinkResponse,
    status_code=status.HTTP_201_CREATED
)
def link_clinic(
    doctor_id: uuid.UUID,
    clinic_id: uuid.UUID,
    link_data: Optional[ClinicLinkCreate] = None,
    db = Depends(get_db)
):
    """Link a doctor to a clinic"""
    link_data = link_data or ClinicLinkCreate()
    return DoctorService(db).link_clinic(
        doctor_id,
        clinic_id,
        is_primary=link_data.is_primary,
        consultation_fee=link_data.consultation_fee
    )


@router.delete("/{doctor_id}/clinics/{clinic_id}", status_code=status.HTTP_204_NO_CONTENT)
def unlink_clinic(
    doctor_id: uuid.UUID,
    clinic_id: uuid.UUID,
    db = Depends(get_db)
):
    DoctorService(db).unlink_clinic(doctor_id, clinic_id)


@router.get("/{doctor_id}/onboarding", response_model=OnboardingStatusResponse)
def get_onboarding_status(
    doctor_id: uuid.UUID,
    db = Depends(get_db)
):
    """Derived onboarding flags"""
    return DoctorService(db).onboarding_status(doctor_id)


@router.get("/{doctor_id}/stats", response_model=DoctorStatsResponse)
def get_doctor_stats(
    doctor_id: uuid.UUID,
    db = Depends(get_db)
):
    """Appointment counts and rating for a doctor"""
    return DoctorService(db).get_doctor_stats(doctor_id)


@router.get("/{doctor_id}/reviews", response_model=List[ReviewResponse])
def list_doctor_reviews(
    doctor_id: uuid.UUID,
    verified_only: bool = True,
    db = Depends(get_db)
):
    """Reviews of a doctor, newest first"""
    return ReviewService(db).list_reviews(doctor_id, verified_only=verified_only)


# ==================== Clinic Endpoints ====================

@clinics_router.post("", response_model=ClinicResponse, status_code=status.HTTP_201_CREATED)
def create_clinic(
    clinic_data: ClinicCreate,
    db = Depends(get_db)
):
    return DoctorService(db).create_clinic(clinic_data.model_dump())


# ==================== Review Endpoints ====================

@reviews_router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
def submit_review(
    review_data: ReviewCreate,
    db = Depends(get_db)
):
    """Review a completed appointment"""
    return ReviewService(db).submit_review(
        appointment_id=review_data.appointment_id,
        patient_id=review_data.patient_id,
        rating=review_data.rating,
        comment=review_data.comment
    )


@reviews_router.post("/{review_id}/verify", response_model=ReviewResponse)
def verify_review(
    review_id: uuid.UUID,
    verify_data: Optional[ReviewVerify] = None,
    db = Depends(get_db)
):
    """Verify a review so it counts toward the doctor's rating"""
    verified = verify_data.verified if verify_data else True
    return ReviewService(db).verify_review(review_id, verified)


@reviews_router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_review(
    review_id: uuid.UUID,
    db = Depends(get_db)
):
    ReviewService(db).delete_review(review_id)
