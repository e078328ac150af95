import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from clinic_booking.core.config import settings
from clinic_booking.core.events import dispatcher
from clinic_booking.core.exceptions import BaseCustomException, create_error_response, handle_database_error
from clinic_booking.core.logging_config import configure_logging
from clinic_booking.api.v1.api import api_router
from clinic_booking.infrastructure.database import init_db, close_db
from clinic_booking.infrastructure.notifications import NotificationSubscriber

logger = logging.getLogger(__name__)

notification_subscriber = NotificationSubscriber()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL, use_json_format=settings.LOG_JSON)
    logger.info("Application starting up...")
    init_db()
    dispatcher.subscribe(notification_subscriber)
    yield
    dispatcher.unsubscribe(notification_subscriber)
    close_db()
    logger.info("Application shutting down...")


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Set all CORS enabled origins
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(BaseCustomException)
async def custom_exception_handler(request: Request, exc: BaseCustomException):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=create_error_response(exc))


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    error = handle_database_error(exc, f"{request.method} {request.url.path}")
    return JSONResponse(status_code=error.status_code, content=create_error_response(error))


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health")
def health_check():
    return {"status": "ok"}
