"""Celery job dispatch utilities."""

from __future__ import annotations

from typing import Any

from celery import Celery
from celery.result import AsyncResult

from sectorscope.jobs.payloads import JobPayload
from sectorscope.jobs.queues import JobOptions, QueueConfig


class CeleryQueueBackend:
    """Publishes pipeline payloads to their Celery queues."""

    def __init__(self, app: Celery):
        self.app = app

    def enqueue(
        self, config: QueueConfig, payload: JobPayload, options: JobOptions
    ) -> str:
        send_options: dict[str, Any] = {
            "task_id": options.job_id,
            "queue": config.name,
        }
        if options.priority is not None:
            send_options["priority"] = options.priority
        if options.delay:
            send_options["countdown"] = options.delay

        result = self.app.send_task(
            config.task_name,
            args=(options.job_id, payload.dump()),
            **send_options,
        )
        return result.id


def get_task_status(task_id: str, app: Celery | None = None) -> dict[str, Any]:
    """Fetch Celery task status from the result backend."""
    if app is None:
        from sectorscope.celery_app import celery_app as app

    result = AsyncResult(task_id, app=app)
    payload: dict[str, Any] = {
        "task_id": task_id,
        "status": result.status,
    }

    if result.successful():
        payload["result"] = result.result
    elif result.failed():
        payload["error"] = str(result.result)

    if result.traceback:
        payload["traceback"] = result.traceback

    return payload
