"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from walt.core.config import settings

celery_app = Celery(
    "walt",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "charge-due-accounts": {
            "task": "billing.charge_due_accounts",
            "schedule": crontab(hour=0, minute=30),
        },
        "reconcile-pending-orders": {
            "task": "billing.reconcile_pending_orders",
            "schedule": crontab(minute=15),
        },
    },
)

celery_app.autodiscover_tasks(["walt.modules.billing"])
