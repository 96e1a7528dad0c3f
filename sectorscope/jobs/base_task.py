"""Celery task base class for pipeline stages: retry and dead-letter logging."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Any

from celery import Task

from sectorscope.core.logging import get_logger

logger = get_logger("jobs.base_task")

# Payload fields holding whole AI reports; logged as their length only
_BULKY_FIELDS = frozenset({"raw_analysis", "judge_review", "stocks"})
TRACEBACK_LOG_LIMIT = 4000


def summarize_job_args(args: tuple) -> dict[str, Any]:
    """Loggable view of ``(job_id, payload)`` task arguments."""
    if len(args) < 2 or not isinstance(args[1], dict):
        return {"args": repr(args)[:500]}

    job_id, payload = args[0], args[1]
    summary: dict[str, Any] = {"job_id": job_id}
    for key, value in payload.items():
        if key in _BULKY_FIELDS:
            summary[f"{key}_size"] = len(value) if value is not None else 0
        else:
            summary[key] = value
    return summary


def _failure_kind(exc: BaseException) -> str | None:
    classification = getattr(exc, "classification", None)
    return classification.kind.value if classification is not None else None


class PipelineTask(Task):
    """Base task for pipeline stages.

    Retries are never automatic: ``_execute_stage`` decides from the error
    classification whether to call ``self.retry``. This class only logs
    lifecycle events, ending with a DEAD_LETTER_QUEUE entry once a job has
    failed for good.

    Usage:
        @celery_app.task(base=PipelineTask, bind=True)
        def my_task(self, job_id, payload):
            ...
    """

    # Acknowledge after the job ran; a crashed worker's job is redelivered
    acks_late = True
    reject_on_worker_lost = True

    def _log_fields(self, task_id: str, args: tuple, **fields: Any) -> dict[str, Any]:
        return {
            "extra_fields": {
                "task_name": self.name,
                "task_id": task_id,
                "attempt": self.request.retries + 1,
                **summarize_job_args(args),
                **fields,
            }
        }

    def before_start(self, task_id: str, args: tuple, kwargs: dict) -> None:
        self.request._started_at = time.monotonic()
        logger.debug("Task starting", extra=self._log_fields(task_id, args))

    def on_retry(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        logger.warning(
            f"Task {self.name} retrying after {type(exc).__name__}",
            extra=self._log_fields(
                task_id,
                args,
                max_retries=self.max_retries,
                kind=_failure_kind(exc),
                exception=str(exc),
            ),
        )

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        """The job will not run again; leave a dead-letter record."""
        logger.error(
            "DEAD_LETTER_QUEUE: Task failed permanently",
            extra=self._log_fields(
                task_id,
                args,
                dlq=True,
                kind=_failure_kind(exc),
                exception=str(exc),
                exception_type=type(exc).__name__,
                traceback=str(einfo)[:TRACEBACK_LOG_LIMIT] if einfo else None,
                failed_at=datetime.now(UTC).isoformat(),
            ),
        )

    def after_return(
        self,
        status: str,
        retval: Any,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        if status != "SUCCESS":
            return
        started_at = getattr(self.request, "_started_at", None)
        duration_ms = int((time.monotonic() - started_at) * 1000) if started_at else None
        logger.info(
            "Task finished",
            extra=self._log_fields(task_id, args, duration_ms=duration_ms),
        )
