from typing import Dict, Any, Optional
from datetime import date, datetime

from loguru import logger

from clinic_booking.workers.celery_app import celery_app
from clinic_booking.core.config import settings
from clinic_booking.core.events import dispatcher
from clinic_booking.infrastructure.database import session_scope
from clinic_booking.domain.appointments.service import AvailabilityService
from clinic_booking.domain.appointments.sweeper import ExpirySweeper


@celery_app.task(name="clinic_booking.workers.tasks.expire_pending_appointments")
def expire_pending_appointments(now: Optional[str] = None) -> Dict[str, Any]:
    """Expire pending appointments older than PENDING_EXPIRY_HOURS"""
    run_at = datetime.fromisoformat(now) if now else None
    with session_scope() as db:
        result = ExpirySweeper(db, dispatcher=dispatcher).run(now=run_at)

    logger.info(
        f"Expiry sweep finished: {result.expired_count} expired, "
        f"{result.skipped} skipped, {result.failed} failed"
    )
    return {
        "examined": result.examined,
        "expired": [str(appointment_id) for appointment_id in result.expired],
        "skipped": result.skipped,
        "failed": result.failed,
    }


@celery_app.task(name="clinic_booking.workers.tasks.redeliver_pending_events")
def redeliver_pending_events(limit: Optional[int] = None) -> Dict[str, Any]:
    """Retry outbox events a subscriber has not acknowledged"""
    with session_scope() as db:
        delivered = dispatcher.redeliver(db, limit=limit or settings.EVENT_REDELIVERY_BATCH_SIZE)

    if delivered:
        logger.info(f"Redelivered {delivered} appointment events")
    return {"delivered": delivered}


@celery_app.task(name="clinic_booking.workers.tasks.purge_past_slots")
def purge_past_slots(today: Optional[str] = None) -> Dict[str, Any]:
    """Delete unbooked slots older than SLOT_RETENTION_DAYS"""
    run_for = date.fromisoformat(today) if today else None
    with session_scope() as db:
        purged = AvailabilityService(db).purge_past_slots(run_for)

    logger.info(f"Purged {purged} past availability slots")
    return {"purged": purged}
