"""
Doctors API Schemas

Pydantic models for doctor, clinic and review API requests and responses.
Derived fields appear only on responses.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal
import uuid


# ==================== Doctor Schemas ====================

class DoctorCreate(BaseModel):
    """Schema for registering a doctor"""
    model_config = ConfigDict(extra="forbid")

    full_name: str = Field(..., min_length=1, max_length=150)
    specialty: Optional[str] = Field(None, max_length=100)
    experience_years: Optional[int] = Field(None, ge=0, le=80)
    license_number: Optional[str] = Field(None, max_length=50)
    bio: Optional[str] = None
    fee: int = Field(0, ge=0)


class DoctorProfileUpdate(BaseModel):
    """Profile fields; onboarding flags are not accepted"""
    model_config = ConfigDict(extra="forbid")

    full_name: Optional[str] = Field(None, min_length=1, max_length=150)
    specialty: Optional[str] = Field(None, max_length=100)
    experience_years: Optional[int] = Field(None, ge=0, le=80)
    license_number: Optional[str] = Field(None, max_length=50)
    bio: Optional[str] = None
    fee: Optional[int] = Field(None, ge=0)

    @field_validator("full_name", "fee")
    @classmethod
    def not_null(cls, value):
        # Omit the field to leave it unchanged; null would clear a required column
        if value is None:
            raise ValueError("may be omitted but not set to null")
        return value


class DoctorVerify(BaseModel):
    verified: bool = True


class DoctorResponse(BaseModel):
    """Schema for doctor response"""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    full_name: str
    specialty: Optional[str] = None
    experience_years: Optional[int] = None
    license_number: Optional[str] = None
    bio: Optional[str] = None
    fee: int
    verified: bool
    is_active: bool
    profile_completed: bool
    clinics_added: bool
    availability_created: bool
    rating: Decimal
    review_count: int
    created_at: Optional[datetime] = None


class OnboardingStatusResponse(BaseModel):
    doctor_id: uuid.UUID
    profile_completed: bool
    clinics_added: bool
    availability_created: bool
    is_onboarded: bool


class DoctorStatsResponse(BaseModel):
    doctor_id: uuid.UUID
    total_appointments: int
    completed_appointments: int
    this_month_appointments: int
    average_rating: Decimal
    total_reviews: int


# ==================== Clinic Schemas ====================

class ClinicCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    address: str = Field(..., min_length=1)
    phone: Optional[str] = Field(None, max_length=30)


class ClinicResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    address: str
    phone: Optional[str] = None


class ClinicLinkCreate(BaseModel):
    is_primary: bool = False
    consultation_fee: Optional[int] = Field(None, ge=0)


class ClinicLinkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    doctor_id: uuid.UUID
    clinic_id: uuid.UUID
    is_primary: bool
    consultation_fee: Optional[int] = None


# ==================== Review Schemas ====================

class ReviewCreate(BaseModel):
    appointment_id: uuid.UUID
    patient_id: uuid.UUID
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class ReviewVerify(BaseModel):
    verified: bool = True


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    appointment_id: uuid.UUID
    doctor_id: uuid.UUID
    patient_id: uuid.UUID
    rating: int
    comment: Optional[str] = None
    is_verified: bool
    created_at: Optional[datetime] = None
