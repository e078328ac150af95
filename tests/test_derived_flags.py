import pytest
from decimal import Decimal
from datetime import date, time
from uuid import uuid4

from clinic_booking.core.exceptions import (
    BusinessLogicError, ConflictError, NotFoundError, ValidationError
)
from clinic_booking.domain.doctors.models import Doctor
from clinic_booking.domain.doctors.service import DerivedFlagEngine, is_profile_complete


@pytest.mark.unit
class TestProfileCompleteness:
    """Profile completeness is a pure function of the profile fields."""

    def _doctor(self, **overrides) -> Doctor:
        fields = {
            "full_name": "Dr. Test",
            "specialty": "Dermatology",
            "experience_years": 7,
            "license_number": "LIC-1",
            "bio": "Skin.",
        }
        fields.update(overrides)
        return Doctor(**fields)

    def test_complete(self) -> None:
        assert is_profile_complete(self._doctor())

    def test_zero_experience_counts_as_set(self) -> None:
        assert is_profile_complete(self._doctor(experience_years=0))

    @pytest.mark.parametrize("field,value", [
        ("specialty", None),
        ("specialty", ""),
        ("license_number", None),
        ("bio", "   "),
        ("bio", None),
        ("experience_years", None),
    ])
    def test_missing_field(self, field, value) -> None:
        assert not is_profile_complete(self._doctor(**{field: value}))


@pytest.mark.integration
class TestDoctorFlags:
    """Flags are recomputed by the operation that changes their inputs."""

    def test_new_doctor_flags(self, doctor_service, sample_doctor_data) -> None:
        doctor = doctor_service.create_doctor(sample_doctor_data)

        assert doctor.profile_completed is True
        assert doctor.clinics_added is False
        assert doctor.availability_created is False
        assert doctor.is_onboarded is False

    def test_derived_fields_in_input_are_ignored(self, doctor_service, sample_doctor_data) -> None:
        doctor = doctor_service.create_doctor({
            **sample_doctor_data,
            "bio": None,
            "profile_completed": True,
            "rating": Decimal("5.00"),
        })

        assert doctor.profile_completed is False
        assert doctor.rating == Decimal("0.00")

    def test_profile_flag_flips_both_ways(self, doctor_service, sample_doctor_data) -> None:
        doctor = doctor_service.create_doctor(sample_doctor_data)

        doctor_service.update_profile(doctor.id, {"bio": "   "})
        assert doctor_service.get_doctor(doctor.id).profile_completed is False

        doctor_service.update_profile(doctor.id, {"bio": "Back again."})
        assert doctor_service.get_doctor(doctor.id).profile_completed is True

    def test_derived_fields_are_not_writable(self, doctor_service, doctor) -> None:
        with pytest.raises(ValidationError) as exception_info:
            doctor_service.update_profile(doctor.id, {"profile_completed": False})
        assert exception_info.value.error_code == "FIELD_NOT_WRITABLE"

    @pytest.mark.parametrize("field", ["full_name", "fee"])
    def test_required_fields_cannot_be_cleared(self, doctor_service, doctor, field) -> None:
        with pytest.raises(ValidationError) as exception_info:
            doctor_service.update_profile(doctor.id, {field: None})
        assert exception_info.value.error_code == "FIELD_REQUIRED"
        assert exception_info.value.details["fields"] == [field]

        assert getattr(doctor_service.get_doctor(doctor.id), field) is not None

    def test_optional_fields_can_be_cleared(self, doctor_service, doctor) -> None:
        updated = doctor_service.update_profile(doctor.id, {"bio": None})

        assert updated.bio is None
        assert updated.profile_completed is False

    def test_clinic_flag_follows_links(self, doctor_service, sample_doctor_data, clinic) -> None:
        doctor = doctor_service.create_doctor(sample_doctor_data)
        second = doctor_service.create_clinic({"name": "Hillside", "address": "3 Hill St"})

        doctor_service.link_clinic(doctor.id, clinic.id)
        doctor_service.link_clinic(doctor.id, second.id)
        assert doctor_service.get_doctor(doctor.id).clinics_added is True

        doctor_service.unlink_clinic(doctor.id, clinic.id)
        assert doctor_service.get_doctor(doctor.id).clinics_added is True

        doctor_service.unlink_clinic(doctor.id, second.id)
        assert doctor_service.get_doctor(doctor.id).clinics_added is False

    def test_link_errors(self, doctor_service, doctor, clinic) -> None:
        with pytest.raises(ConflictError) as exception_info:
            doctor_service.link_clinic(doctor.id, clinic.id)
        assert exception_info.value.error_code == "CLINIC_ALREADY_LINKED"

        with pytest.raises(NotFoundError) as exception_info:
            doctor_service.link_clinic(doctor.id, uuid4())
        assert exception_info.value.error_code == "CLINIC_NOT_FOUND"

        with pytest.raises(NotFoundError) as exception_info:
            doctor_service.unlink_clinic(doctor.id, uuid4())
        assert exception_info.value.error_code == "CLINIC_LINK_NOT_FOUND"

    def test_availability_flag_follows_slots(self, availability_service, doctor_service, make_slot, doctor) -> None:
        assert doctor_service.get_doctor(doctor.id).availability_created is False

        slot = make_slot()
        status = doctor_service.onboarding_status(doctor.id)
        assert status["availability_created"] is True
        assert status["is_onboarded"] is True

        availability_service.remove_slot(slot.id)
        assert doctor_service.onboarding_status(doctor.id)["availability_created"] is False

    def test_slot_with_appointments_cannot_be_removed(
        self, availability_service, appointment_service, slot
    ) -> None:
        appointment_service.reserve(uuid4(), slot.id)

        with pytest.raises(ConflictError) as exception_info:
            availability_service.remove_slot(slot.id)
        assert exception_info.value.error_code == "SLOT_HAS_APPOINTMENTS"

    def test_recompute_all_repairs_drift(self, doctor_service, db_session, make_slot, doctor) -> None:
        make_slot()
        doctor.clinics_added = False
        doctor.availability_created = False
        doctor.profile_completed = False
        db_session.commit()

        assert doctor_service.recompute_all() == 1

        db_session.refresh(doctor)
        assert doctor.is_onboarded is True

    def test_flags_are_idempotent(self, db_session, doctor) -> None:
        engine = DerivedFlagEngine(db_session)

        first = engine.recompute_all(doctor.id)
        second = engine.recompute_all(doctor.id)

        assert first == second


@pytest.mark.integration
class TestAvailabilityPublishing:
    """Slot publishing preconditions."""

    def test_unlinked_clinic(self, availability_service, doctor_service, doctor, clock) -> None:
        other = doctor_service.create_clinic({"name": "Elsewhere", "address": "9 Far Lane"})

        with pytest.raises(BusinessLogicError) as exception_info:
            availability_service.publish_slot(
                doctor.id, other.id, clock().date(), time(9, 0), time(9, 30)
            )
        assert exception_info.value.error_code == "CLINIC_NOT_LINKED"

    def test_duplicate_start(self, make_slot) -> None:
        make_slot()

        with pytest.raises(ConflictError) as exception_info:
            make_slot(end=time(11, 0))
        assert exception_info.value.error_code == "SLOT_EXISTS"

    @pytest.mark.parametrize("kwargs,error_code", [
        ({"start": time(11, 0), "end": time(10, 0)}, "INVALID_TIME_WINDOW"),
        ({"capacity": 0}, "INVALID_CAPACITY"),
        ({"days_ahead": -1}, "SLOT_IN_PAST"),
    ])
    def test_rejected_slots(self, make_slot, kwargs, error_code) -> None:
        with pytest.raises((ValidationError, BusinessLogicError)) as exception_info:
            make_slot(**kwargs)
        assert exception_info.value.error_code == error_code

    def test_list_availability(self, availability_service, appointment_service, make_slot, doctor, clock) -> None:
        full = make_slot(days_ahead=1)
        open_slot = make_slot(days_ahead=2, capacity=2)
        make_slot(days_ahead=10)
        appointment_service.reserve(uuid4(), full.id)

        window = availability_service.list_availability(
            doctor.id, date_from=full.date, date_to=open_slot.date
        )
        assert [s.id for s in window] == [full.id, open_slot.id]

        bookable = availability_service.list_availability(
            doctor.id, date_from=full.date, date_to=open_slot.date, only_available=True
        )
        assert [s.id for s in bookable] == [open_slot.id]
        assert bookable[0].remaining_capacity == 2

    def test_inverted_date_range(self, availability_service, doctor, clock) -> None:
        with pytest.raises(ValidationError) as exception_info:
            availability_service.list_availability(
                doctor.id, date_from=clock().date(), date_to=clock().date().replace(day=1)
            )
        assert exception_info.value.error_code == "INVALID_DATE_RANGE"


@pytest.mark.integration
class TestReviewRating:
    """Doctor rating is the mean of verified reviews."""

    @pytest.fixture
    def completed_visit(self, appointment_service, make_slot):
        """Return a factory producing (appointment, patient_id) pairs for completed visits."""
        counter = {"day": 0}

        def _make():
            counter["day"] += 1
            patient_id = uuid4()
            appointment = appointment_service.reserve(patient_id, make_slot(days_ahead=counter["day"]).id)
            appointment_service.confirm(appointment.id)
            appointment_service.start(appointment.id)
            appointment_service.complete(appointment.id)
            return appointment, patient_id
        return _make

    def test_rating_counts_verified_reviews_only(self, review_service, doctor_service, completed_visit, doctor) -> None:
        reviews = []
        for score in (5, 4, 4, 1):
            appointment, patient_id = completed_visit()
            reviews.append(review_service.submit_review(appointment.id, patient_id, score))

        assert doctor_service.get_doctor(doctor.id).rating == Decimal("0.00")

        for review in reviews[:3]:
            review_service.verify_review(review.id)

        refreshed = doctor_service.get_doctor(doctor.id)
        assert refreshed.rating == Decimal("4.33")
        assert refreshed.review_count == 3

        review_service.delete_review(reviews[0].id)
        assert doctor_service.get_doctor(doctor.id).rating == Decimal("4.00")

    def test_unverifying_last_review_resets_rating(self, review_service, doctor_service, completed_visit, doctor) -> None:
        appointment, patient_id = completed_visit()
        review = review_service.submit_review(appointment.id, patient_id, 5)
        review_service.verify_review(review.id)
        assert doctor_service.get_doctor(doctor.id).rating == Decimal("5.00")

        review_service.verify_review(review.id, verified=False)

        refreshed = doctor_service.get_doctor(doctor.id)
        assert refreshed.rating == Decimal("0.00")
        assert refreshed.review_count == 0

    def test_review_requires_completed_visit(self, review_service, appointment_service, slot) -> None:
        patient_id = uuid4()
        appointment = appointment_service.reserve(patient_id, slot.id)

        with pytest.raises(BusinessLogicError) as exception_info:
            review_service.submit_review(appointment.id, patient_id, 5)
        assert exception_info.value.error_code == "REVIEW_NOT_ALLOWED"

    def test_review_by_other_patient(self, review_service, completed_visit) -> None:
        appointment, _ = completed_visit()

        with pytest.raises(NotFoundError):
            review_service.submit_review(appointment.id, uuid4(), 5)

    def test_one_review_per_visit(self, review_service, completed_visit) -> None:
        appointment, patient_id = completed_visit()
        review_service.submit_review(appointment.id, patient_id, 4)

        with pytest.raises(ConflictError) as exception_info:
            review_service.submit_review(appointment.id, patient_id, 5)
        assert exception_info.value.error_code == "REVIEW_EXISTS"

    @pytest.mark.parametrize("rating", [0, 6, True])
    def test_rating_bounds(self, review_service, completed_visit, rating) -> None:
        appointment, patient_id = completed_visit()

        with pytest.raises(ValidationError):
            review_service.submit_review(appointment.id, patient_id, rating)

    def test_list_reviews(self, review_service, completed_visit, doctor) -> None:
        appointment, patient_id = completed_visit()
        verified = review_service.submit_review(appointment.id, patient_id, 5)
        review_service.verify_review(verified.id)
        appointment, patient_id = completed_visit()
        unverified = review_service.submit_review(appointment.id, patient_id, 2)

        assert [r.id for r in review_service.list_reviews(doctor.id)] == [verified.id]
        everything = review_service.list_reviews(doctor.id, verified_only=False)
        assert {r.id for r in everything} == {verified.id, unverified.id}

        with pytest.raises(NotFoundError):
            review_service.list_reviews(uuid4())


@pytest.mark.integration
class TestDoctorStats:
    """Appointment counts and rating summary."""

    def test_stats(self, doctor_service, review_service, appointment_service, make_slot, doctor) -> None:
        patient_id = uuid4()
        visit = appointment_service.reserve(patient_id, make_slot(days_ahead=1).id)
        appointment_service.confirm(visit.id)
        appointment_service.start(visit.id)
        appointment_service.complete(visit.id)
        appointment_service.reserve(uuid4(), make_slot(days_ahead=5).id)
        cancelled = appointment_service.reserve(uuid4(), make_slot(days_ahead=6).id)
        appointment_service.cancel(cancelled.id)
        review = review_service.submit_review(visit.id, patient_id, 4)
        review_service.verify_review(review.id)

        stats = doctor_service.get_doctor_stats(doctor.id)

        assert stats["total_appointments"] == 3
        assert stats["completed_appointments"] == 1
        assert stats["this_month_appointments"] == 3
        assert stats["average_rating"] == Decimal("4.00")
        assert stats["total_reviews"] == 1

    def test_month_window(self, doctor_service, appointment_service, slot, doctor) -> None:
        appointment_service.reserve(uuid4(), slot.id)

        stats = doctor_service.get_doctor_stats(doctor.id, today=date(2026, 4, 15))

        assert stats["total_appointments"] == 1
        assert stats["this_month_appointments"] == 0

    def test_new_doctor(self, doctor_service, doctor) -> None:
        stats = doctor_service.get_doctor_stats(doctor.id)

        assert stats["total_appointments"] == 0
        assert stats["average_rating"] == Decimal("0.00")
        assert stats["total_reviews"] == 0

    def test_unknown_doctor(self, doctor_service) -> None:
        with pytest.raises(NotFoundError):
            doctor_service.get_doctor_stats(uuid4())
