"""Celery beat schedule configuration.

Order status repair always runs. Expiry of stale PENDING transactions is
registered only when a pending timeout is configured; without one, they are
left for the gateway callback.
"""
from __future__ import annotations

from core.settings import payment_settings


def build_beat_schedule(sweep=payment_settings.sweep) -> dict:
    schedule = {
        "reconcile-order-statuses": {
            "task": "payments.reconcile_order_statuses",
            "schedule": float(sweep.interval_seconds),
        },
    }
    if sweep.pending_timeout_minutes:
        schedule["expire-stale-payments"] = {
            "task": "payments.expire_stale_payments",
            "schedule": float(sweep.interval_seconds),
        }
    return schedule


CELERY_BEAT_SCHEDULE = build_beat_schedule()
