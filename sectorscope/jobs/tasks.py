"""Celery tasks: one per pipeline stage plus the job status retention sweep."""

from __future__ import annotations

import asyncio
from typing import Any

from celery import signals
from celery.exceptions import SoftTimeLimitExceeded

from sectorscope.celery_app import celery_app
from sectorscope.core.config import settings
from sectorscope.core.logging import get_logger
from sectorscope.database.connection import close_sqlalchemy_engine
from sectorscope.jobs.base_task import PipelineTask
from sectorscope.jobs.dispatch import CeleryQueueBackend
from sectorscope.jobs.errors import (
    JobTimeoutError,
    StageFailedError,
    calculate_retry_delay,
    should_retry,
)
from sectorscope.jobs.payloads import JobType, parse_payload
from sectorscope.jobs.queues import QUEUE_CONFIGS, get_queue_config
from sectorscope.jobs.registry import PipelineRegistry


logger = get_logger("jobs.celery_tasks")

SHUTDOWN_TIMEOUT = 30.0

# The stage timeout (asyncio) must expire before Celery's soft limit, and
# the soft limit before the hard kill
SOFT_LIMIT_HEADROOM = 15
HARD_LIMIT_HEADROOM = 15

# Per-worker event loop for Celery prefork pool
_worker_loop: asyncio.AbstractEventLoop | None = None
_registry: PipelineRegistry | None = None


def _get_worker_loop() -> asyncio.AbstractEventLoop:
    """Get or create a persistent event loop for the worker process."""
    global _worker_loop
    if _worker_loop is None or _worker_loop.is_closed():
        _worker_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_worker_loop)
    return _worker_loop


def _run_async(coro: Any) -> Any:
    """Run async coroutine in the worker's event loop.

    The loop outlives single tasks so pooled database connections and the
    AI client stay usable between jobs.
    """
    loop = _get_worker_loop()
    return loop.run_until_complete(coro)


def get_registry() -> PipelineRegistry:
    """The registry of this worker process, built on first use."""
    global _registry
    if _registry is None:
        _registry = PipelineRegistry.create(CeleryQueueBackend(celery_app))
    return _registry


@signals.worker_process_init.connect
def init_worker_registry(**kwargs: Any) -> None:
    get_registry()
    logger.info("Pipeline registry initialized for worker process")


@signals.worker_process_shutdown.connect
def shutdown_worker_registry(**kwargs: Any) -> None:
    global _registry
    if _registry is None:
        return

    async def _shutdown(registry: PipelineRegistry) -> None:
        await registry.shutdown(timeout=SHUTDOWN_TIMEOUT)
        await close_sqlalchemy_engine()

    try:
        _run_async(_shutdown(_registry))
    finally:
        _registry = None


def _cancel_pending(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel coroutines left behind when a signal interrupted the loop."""
    pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
    for t in pending:
        t.cancel()
    if pending:
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))


def _execute_stage(task: PipelineTask, job_id: str, data: dict[str, Any]) -> dict[str, Any]:
    payload = parse_payload(data)
    registry = get_registry()
    try:
        try:
            return _run_async(registry.run(job_id, payload))
        except SoftTimeLimitExceeded as exc:
            # Normally the stage's own timeout fires first; this is the backstop
            _cancel_pending(_get_worker_loop())
            timeout = JobTimeoutError(
                f"{payload.job_type} job exceeded the soft time limit of {task.soft_time_limit}s"
            )
            raise _run_async(registry.fail(job_id, payload, timeout)) from exc
    except StageFailedError as exc:
        attempt = task.request.retries + 1
        config = get_queue_config(payload.job_type)
        if should_retry(exc.classification, attempt, config.attempts):
            delay = calculate_retry_delay(exc.classification, attempt)
            logger.warning(
                f"Retrying {job_id} in {delay:g}s ({exc.classification.kind.value})"
            )
            raise task.retry(exc=exc, countdown=delay)
        raise


def _task_options(job_type: JobType) -> dict[str, Any]:
    config = QUEUE_CONFIGS[job_type]
    soft_limit = config.timeout_seconds + SOFT_LIMIT_HEADROOM
    return {
        "name": config.task_name,
        "base": PipelineTask,
        "bind": True,
        "queue": config.name,
        "rate_limit": config.rate_limit,
        "soft_time_limit": soft_limit,
        "time_limit": soft_limit + HARD_LIMIT_HEADROOM,
        "max_retries": config.max_retries,
    }


@celery_app.task(**_task_options(JobType.SECTOR_RESEARCH))
def sector_research_task(self: PipelineTask, job_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return _execute_stage(self, job_id, payload)


@celery_app.task(**_task_options(JobType.STOCK_RANKING))
def stock_ranking_task(self: PipelineTask, job_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return _execute_stage(self, job_id, payload)


@celery_app.task(**_task_options(JobType.STOCK_ANALYSIS))
def stock_analysis_task(self: PipelineTask, job_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return _execute_stage(self, job_id, payload)


@celery_app.task(**_task_options(JobType.JUDGE_REVIEW))
def judge_review_task(self: PipelineTask, job_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return _execute_stage(self, job_id, payload)


@celery_app.task(**_task_options(JobType.FORMAT_INSIGHTS))
def format_insights_task(self: PipelineTask, job_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return _execute_stage(self, job_id, payload)


@celery_app.task(name="pipeline.job_status_cleanup", base=PipelineTask, bind=True)
def job_status_cleanup_task(self: PipelineTask) -> str:
    days = settings.job_status_retention_days
    deleted = _run_async(get_registry().tracker.purge_older_than(days))
    return f"Purged {deleted} job status records older than {days} days"
