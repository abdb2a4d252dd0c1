# backend/sessionbook/tasks/celery_app.py
"""
Celery application configuration for SessionBook.

Sets up the Celery app with Redis as the broker, JSON serialization, UTC
timezone and the beat schedule that drives booking housekeeping.
"""

import logging
from typing import Any, Optional, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging

from ..core.config import Settings, load_settings
from ..core.exceptions import TransientStorageException

HOUSEKEEPING_TASK = "sessionbook.tasks.housekeeping.run_booking_housekeeping"

_app_settings: Optional[Settings] = None


def get_app_settings() -> Settings:
    """Settings the Celery app was created with."""
    global _app_settings
    if _app_settings is None:
        _app_settings = load_settings()
    return _app_settings


def create_celery_app(settings: Optional[Settings] = None) -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    global _app_settings
    settings = settings or load_settings()
    _app_settings = settings
    broker_url = settings.celery_broker_url
    result_backend = settings.celery_result_backend or broker_url

    app = Celery("sessionbook", broker=broker_url, backend=result_backend)
    app.conf.update(
        {
            # Task settings
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            # Worker settings
            "worker_prefetch_multiplier": 1,
            "worker_max_tasks_per_child": 1000,
            # Task execution settings
            "task_soft_time_limit": 240,
            "task_time_limit": 300,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "worker_hijack_root_logger": False,
            "broker_transport_options": {"visibility_timeout": 3600},
        }
    )
    app.conf.imports = ("sessionbook.tasks.housekeeping",)
    app.conf.beat_schedule = {
        "booking-housekeeping": {
            "task": HOUSEKEEPING_TASK,
            "schedule": float(settings.housekeeping_interval_seconds),
            # A sweep that missed its slot is superseded by the next one.
            "options": {"expires": settings.housekeeping_interval_seconds},
        },
    }
    return app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


class BaseTask(Task):  # type: ignore[misc]
    """Base task with retry on transient storage failures and logging."""

    autoretry_for = (TransientStorageException,)
    retry_kwargs = {"max_retries": 3, "countdown": 30}
    retry_backoff = True
    retry_backoff_max = 300
    retry_jitter = True

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logging.getLogger(__name__).error(
            f"Task {self.name}[{task_id}] failed with exception: {exc}",
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logging.getLogger(__name__).warning(
            f"Task {self.name}[{task_id}] retry {self.request.retries} due to: {exc}",
            extra={"task_id": task_id, "task_name": self.name, "retry_count": self.request.retries},
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


# Create the Celery app instance
celery_app = create_celery_app()
celery_app.Task = cast(Type[Task], BaseTask)
