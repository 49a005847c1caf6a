"""Payment maintenance and notification tasks"""
from __future__ import annotations

import asyncio

from celery import shared_task

from ..utils.base_task import BaseTask
from ..utils.dispatcher import TaskDispatcher
from application.services.payment_sweep_service import PaymentSweepService
from core.logging_config import get_logger
from infrastructure.database import engine
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)


def _sweep_service() -> PaymentSweepService:
    return PaymentSweepService(SQLAlchemyUnitOfWork, TaskDispatcher())


def _run(method_name: str) -> int:
    async def _main() -> int:
        try:
            return await getattr(_sweep_service(), method_name)()
        finally:
            # Pooled connections are bound to this event loop.
            await engine.dispose()

    return asyncio.run(_main())


@shared_task(name="payments.expire_stale_payments", bind=True, base=BaseTask)
def expire_stale_payments(self) -> int:
    """Fail PENDING transactions the gateway never settled."""
    return _run("expire_stale_pending")


@shared_task(name="payments.reconcile_order_statuses", bind=True, base=BaseTask)
def reconcile_order_statuses(self) -> int:
    return _run("reconcile_order_statuses")


@shared_task(
    name="payments.notify_payment_outcome",
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def notify_payment_outcome(self, event: dict) -> None:
    """Deliver a terminal payment outcome to customer-facing channels.

    Replace the body with real email integration (SMTP/ESP).
    """
    logger.info(
        "payment_outcome_notified",
        kind=event.get("kind"),
        order_id=event.get("order_id"),
        transaction_id=event.get("transaction_id"),
        amount=event.get("amount"),
        reason=event.get("reason"),
    )


@shared_task(
    name="payments.notify_order_status_changed",
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def notify_order_status_changed(self, event: dict) -> None:
    logger.info(
        "order_status_change_notified",
        order_id=event.get("order_id"),
        from_status=event.get("from_status"),
        to_status=event.get("to_status"),
        actor=event.get("actor"),
    )
