"""
Celery Application Configuration
"""
from celery import Celery
from celery.schedules import crontab

from booking_engine.core.config import settings

celery_app = Celery(
    "booking_engine",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["booking_engine.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Kolkata",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "reconcile-shipments": {
        "task": "booking_engine.workers.tasks.reconcile_shipments",
        "schedule": settings.RECONCILIATION_INTERVAL_SECONDS,
    },
    # Replays every active wallet's ledger, off-peak
    "audit-wallet-ledgers-daily": {
        "task": "booking_engine.workers.tasks.audit_wallet_ledgers",
        "schedule": crontab(hour="2", minute="30"),
    },
}
