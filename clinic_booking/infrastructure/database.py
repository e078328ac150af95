from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from clinic_booking.core.config import settings

# Base model
Base = declarative_base()


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine for the configured backend"""
    if "sqlite" in database_url.lower():
        # Writers wait on the database file lock instead of failing immediately
        return create_engine(
            database_url,
            pool_pre_ping=True,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30}
        )
    return create_engine(
        database_url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=echo
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False
    )


engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
SessionLocal = build_session_factory(engine)


def get_db() -> Iterator[Session]:
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(factory: sessionmaker = None) -> Iterator[Session]:
    """Session for workers and scripts; the caller owns commit/rollback"""
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = None) -> None:
    """Initialize database tables"""
    # Import models so their tables are registered on Base.metadata
    from clinic_booking.domain.doctors import models as doctor_models  # noqa: F401
    from clinic_booking.domain.appointments import models as appointment_models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def close_db() -> None:
    """Close database connections"""
    engine.dispose()
