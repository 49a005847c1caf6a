"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict

from core.logging_config import get_logger
from domain.order.events import OrderStatusChanged
from domain.payment.events import PaymentEvent, PaymentSucceeded
from ..config.celery import celery_app


logger = get_logger(__name__)


def _event_payload(event: Any) -> Dict[str, Any]:
    payload = asdict(event)
    payload["occurred_at"] = event.occurred_at.isoformat()
    return payload


class TaskDispatcher:
    """Internal facade used by application layer to schedule tasks.

    Implements the payment notifier port. Broker errors are logged and
    swallowed: the state being reported has already been committed.
    """

    def payment_outcome(self, event: PaymentEvent) -> None:
        payload = _event_payload(event)
        payload["kind"] = "succeeded" if isinstance(event, PaymentSucceeded) else "failed"
        self.enqueue("payments.notify_payment_outcome", kwargs={"event": payload})

    def order_status_changed(self, event: OrderStatusChanged) -> None:
        self.enqueue("payments.notify_order_status_changed", kwargs={"event": _event_payload(event)})

    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None:
        """Generic escape hatch for scheduling arbitrary tasks by name."""
        try:
            if celery_app.conf.task_always_eager and task_name in celery_app.tasks:
                celery_app.tasks[task_name].apply(args=args or (), kwargs=kwargs or {})
                return
            celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {})
        except Exception as exc:
            logger.error("task_dispatch_failed", task_name=task_name, error=str(exc))
