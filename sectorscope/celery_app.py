"""Celery application setup for the pipeline queues."""

from __future__ import annotations

import os
from typing import Any

from celery import Celery, signals
from celery.schedules import crontab
from kombu import Queue

from sectorscope.core.config import settings
from sectorscope.core.logging import setup_logging
from sectorscope.jobs.queues import QUEUE_CONFIGS


MAINTENANCE_QUEUE = "maintenance"


def _build_task_routes() -> dict[str, dict[str, str]]:
    routes = {config.task_name: {"queue": config.name} for config in QUEUE_CONFIGS.values()}
    routes["pipeline.job_status_cleanup"] = {"queue": MAINTENANCE_QUEUE}
    return routes


def _build_queues() -> tuple[Queue, ...]:
    names = [config.name for config in QUEUE_CONFIGS.values()] + [MAINTENANCE_QUEUE]
    return tuple(Queue(name, routing_key=name, max_priority=9) for name in names)


def crontab_from_expression(expression: str) -> crontab:
    """Build a schedule from a five-field cron expression."""
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Invalid cron expression: {expression!r}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


broker_url = os.getenv("CELERY_BROKER_URL", settings.valkey_url)
result_backend = os.getenv("CELERY_RESULT_BACKEND", broker_url)

celery_app = Celery(
    "sectorscope",
    broker=broker_url,
    backend=result_backend,
    include=["sectorscope.jobs.tasks"],
)

celery_app.conf.update(
    timezone=settings.scheduler_timezone,
    enable_utc=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    broker_connection_retry_on_startup=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_send_sent_event=True,
    worker_send_task_events=True,
    worker_max_tasks_per_child=int(os.getenv("CELERY_MAX_TASKS_PER_CHILD", "100")),
    result_expires=24 * 3600,
    task_default_queue=MAINTENANCE_QUEUE,
    task_default_priority=5,
    task_queue_max_priority=9,
    task_routes=_build_task_routes(),
    broker_transport_options={
        # Longest stage timeout plus headroom, so unacked jobs are not redelivered early
        "visibility_timeout": 60 * 60,
        "priority_steps": list(range(10)),
        "queue_order_strategy": "priority",
    },
    task_queues=_build_queues(),
    beat_schedule={
        "job-status-cleanup": {
            "task": "pipeline.job_status_cleanup",
            "schedule": crontab_from_expression(settings.job_status_cleanup_cron),
            "options": {"queue": MAINTENANCE_QUEUE},
        },
    },
)


@signals.setup_logging.connect
def configure_worker_logging(**kwargs: Any) -> None:
    """Use the application's log format instead of Celery's default handlers."""
    setup_logging()
