"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "kitchenlink",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.scheduler", "workers.ingest"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.ingest.*": {"queue": "sync"},
        "workers.scheduler.*": {"queue": "sync"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # These jobs fan out across connected integrations via
    # workers.scheduler.dispatch_active_integrations.
    beat_schedule={
        # Items left PENDING by a crashed API process
        "drain-pending-inbox-5m": {
            "task": "workers.scheduler.dispatch_active_integrations",
            "schedule": crontab(minute="*/5"),
            "kwargs": {"task_name": "workers.ingest.drain_pending_inbox"},
            "options": {"queue": "sync"},
        },
        # 03:30 UTC = 00:30 in São Paulo; day=None backfills the previous business day
        "backfill-daily-orders": {
            "task": "workers.scheduler.dispatch_active_integrations",
            "schedule": crontab(hour=3, minute=30),
            "kwargs": {"task_name": "workers.ingest.backfill_daily_orders"},
            "options": {"queue": "sync"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
