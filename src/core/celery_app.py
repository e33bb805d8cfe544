"""
Celery Application Configuration

Configures Celery with:
- A dedicated queue for background removal drains
- Late acknowledgment (a drain lost with its worker is simply re-run)
- An optional beat schedule that drains periodically
"""

from celery import Celery
from kombu import Queue

from src.core.config import settings

# Create Celery app
celery_app = Celery(
    "web_companion",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
    include=[
        "src.pipeline.tasks",
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

    # Task tracking
    task_track_started=True,
    task_time_limit=900,  # 15 minute hard limit
    task_soft_time_limit=840,  # 14 minute soft limit

    # Result expiration
    result_expires=3600,  # 1 hour

    # Worker settings
    worker_prefetch_multiplier=1,  # rembg is memory hungry, one drain at a time

    # Queue definitions
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("rembg_queue", routing_key="rembg.#"),
    ),
    task_default_queue="default",

    # Task routing
    task_routes={
        "src.pipeline.tasks.drain_pending_uploads": {"queue": "rembg_queue"},
    },

    # Late acknowledgment for reliability
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule: periodic drain for jobs whose intake signal was lost
if settings.WORKER_BEAT_INTERVAL_SECONDS > 0:
    celery_app.conf.beat_schedule = {
        "drain-pending-uploads": {
            "task": "src.pipeline.tasks.drain_pending_uploads",
            "schedule": settings.WORKER_BEAT_INTERVAL_SECONDS,
            "kwargs": {
                "limit": settings.WORKER_DEFAULT_LIMIT,
                "recover": settings.WORKER_BEAT_RECOVERY_SCAN,
            },
        },
    }
