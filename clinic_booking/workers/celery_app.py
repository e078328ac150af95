from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init
from clinic_booking.core.config import settings

# Create Celery app
celery_app = Celery(
    "clinic_booking",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "clinic_booking.workers.tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Worker settings
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,

    # Task routing
    task_routes={
        "clinic_booking.workers.tasks.*": {"queue": "default"},
    },

    # Beat schedule (periodic tasks)
    beat_schedule={
        "hourly-expire-pending-appointments": {
            "task": "clinic_booking.workers.tasks.expire_pending_appointments",
            "schedule": crontab(minute=settings.EXPIRY_SWEEP_MINUTE),  # Every hour
        },
        "redeliver-appointment-events": {
            "task": "clinic_booking.workers.tasks.redeliver_pending_events",
            "schedule": crontab(minute="*/5"),  # Every 5 minutes
        },
        "daily-purge-past-slots": {
            "task": "clinic_booking.workers.tasks.purge_past_slots",
            "schedule": crontab(hour=2, minute=30),  # 2:30 AM UTC
        },
    },
)


@worker_process_init.connect
def setup_worker(**kwargs):
    """Logging and event subscribers for each worker process"""
    from clinic_booking.core.events import dispatcher
    from clinic_booking.core.logging_config import configure_logging
    from clinic_booking.infrastructure.notifications import NotificationSubscriber

    configure_logging(settings.LOG_LEVEL, use_json_format=settings.LOG_JSON)
    dispatcher.subscribe(NotificationSubscriber())
