"""Shared execution contract for pipeline stage workers."""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Optional, TypeVar

from sectorscope.core.logging import get_logger, job_context
from sectorscope.jobs.errors import (
    JobTimeoutError,
    StageFailedError,
    classify_error,
    format_error_message,
)
from sectorscope.jobs.payloads import JobType
from sectorscope.jobs.queues import QUEUE_CONFIGS, QueueSet

if TYPE_CHECKING:
    from sectorscope.repositories.analysis_orm import AnalysisRepository
    from sectorscope.repositories.job_status_orm import JobStatusTracker
    from sectorscope.services.ai.client import AIClient


logger = get_logger("jobs.workers")

P = TypeVar("P")


class StageWorker(ABC, Generic[P]):
    """Runs one stage job and keeps its JobStatus row in step.

    Subclasses implement ``process`` (domain work, reporting checkpoints via
    ``progress``) and ``on_failure`` (resetting or failing the entity the job
    owns). ``run`` wraps both with the queue timeout, status bookkeeping and
    error classification.
    """

    job_type: ClassVar[JobType]
    failure_context: ClassVar[str] = "Job failed"

    def __init__(
        self,
        repository: AnalysisRepository,
        tracker: JobStatusTracker,
        queues: QueueSet,
        ai: AIClient,
        *,
        timeout: Optional[float] = None,
    ):
        self.repository = repository
        self.tracker = tracker
        self.queues = queues
        self.ai = ai
        self.config = QUEUE_CONFIGS[self.job_type]
        self.timeout = timeout if timeout is not None else self.config.timeout_seconds

    @abstractmethod
    async def process(self, job_id: str, payload: P) -> dict[str, Any]:
        """Do the stage's work and return a small summary."""

    async def on_failure(self, payload: P, message: str) -> None:
        """Reset or fail the owning entity after an error."""

    def describe(self, payload: P) -> str:
        return self.failure_context

    async def progress(self, job_id: str, percent: int) -> None:
        await self.tracker.update_progress(job_id, percent)

    async def run(self, job_id: str, payload: P) -> dict[str, Any]:
        """Execute the job. Raises ``StageFailedError`` on any failure."""
        with job_context(job_id, self.job_type.value):
            start = time.monotonic()
            await self.tracker.mark_active(job_id, 0)
            try:
                try:
                    result = await asyncio.wait_for(
                        self.process(job_id, payload), timeout=self.timeout
                    )
                except asyncio.TimeoutError as e:
                    raise JobTimeoutError(
                        f"{self.job_type.value} job timed out after {self.timeout:g}s"
                    ) from e
            except Exception as exc:
                failure = await self.fail(job_id, payload, exc)
                raise failure from exc

            await self.tracker.mark_completed(job_id)
            logger.info(
                f"{self.job_type.value} job {job_id} completed",
                extra={
                    "extra_fields": {
                        "duration_ms": int((time.monotonic() - start) * 1000),
                        **result,
                    }
                },
            )
            return result

    async def fail(self, job_id: str, payload: P, exc: Exception) -> StageFailedError:
        """Record a failure: roll back the entity, mark the job failed, classify."""
        classification = classify_error(exc)
        message = format_error_message(exc, self.describe(payload))

        try:
            await self.on_failure(payload, message)
        except Exception:
            logger.warning(f"Could not roll back entity for job {job_id}", exc_info=True)

        try:
            await self.tracker.mark_failed(job_id, message)
        except Exception:
            logger.warning(f"Could not record failure for job {job_id}", exc_info=True)

        logger.error(
            f"{self.job_type.value} job {job_id} failed: {exc}",
            extra={
                "extra_fields": {
                    "kind": classification.kind.value,
                    "retryable": classification.retryable,
                }
            },
        )
        return StageFailedError(message.split("\n\n", 1)[0], classification)
