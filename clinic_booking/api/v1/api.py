from fastapi import APIRouter
from clinic_booking.core.exceptions import ErrorResponse
from clinic_booking.api.v1.appointments import routes as appointments
from clinic_booking.api.v1.doctors import routes as doctors

# Documented error bodies; rendered by the handlers in main.py
error_responses = {code: {"model": ErrorResponse} for code in (400, 404, 409, 422, 503)}

api_router = APIRouter(responses=error_responses)
api_router.include_router(appointments.router, prefix="/appointments", tags=["appointments"])
api_router.include_router(appointments.availability_router, prefix="/availability", tags=["availability"])
api_router.include_router(doctors.router, prefix="/doctors", tags=["doctors"])
api_router.include_router(doctors.clinics_router, prefix="/clinics", tags=["clinics"])
api_router.include_router(doctors.reviews_router, prefix="/reviews", tags=["reviews"])
