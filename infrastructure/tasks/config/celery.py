"""Celery application configuration

Runs the payment sweeps (beat) and delivers payment/order notifications.
"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


logger = get_logger(__name__)

CELERY_IMPORTS = ("infrastructure.tasks.tasks",)

# Notifications go out ahead of maintenance sweeps.
TASK_ROUTES = {
    "payments.notify_*": {"queue": "high"},
    "payments.expire_stale_payments": {"queue": "low"},
    "payments.reconcile_order_statuses": {"queue": "low"},
}

EAGER_ENVIRONMENTS = {"development", "dev", "test", "testing"}


celery_app = Celery("storefront")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Sweeps are idempotent (compare-and-swap on PENDING), so late acks are safe.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_default_retry_delay=5,
    task_queues=(Queue("high"), Queue("default"), Queue("low")),
    task_routes=TASK_ROUTES,
    beat_schedule=CELERY_BEAT_SCHEDULE,
    imports=CELERY_IMPORTS,
)

if (settings.ENVIRONMENT or "production").lower() in EAGER_ENVIRONMENTS:
    celery_app.conf.task_always_eager = True


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        eager=bool(sender.conf.task_always_eager),
        scheduled=sorted(sender.conf.beat_schedule or {}),
    )
