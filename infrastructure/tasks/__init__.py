"""Celery task infrastructure package.

Importing this module wires together the configured Celery app, registers
the payment tasks and exposes the dispatcher facade used as the
application's notifier.
"""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher
from . import tasks  # noqa: F401 registers tasks for eager dispatch

__all__ = ["celery_app", "TaskDispatcher"]
