"""Common base task for payment jobs"""
from __future__ import annotations

import structlog
from celery import Task

from core.logging_config import get_logger

logger = get_logger(__name__)


class BaseTask(Task):
    """Binds task identity to the structlog context and logs each outcome."""

    def before_start(self, task_id, args, kwargs):  # type: ignore[override]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(task_id=task_id, task_name=self.name)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            exc=str(exc),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        # kwargs carry event payloads (amounts, order ids); keep them out of error logs
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            exc=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info("celery_task_success", task_id=task_id, task_name=self.name, result=retval)
        super().on_success(retval, task_id, args, kwargs)
