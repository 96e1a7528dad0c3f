"""Queue table and the enqueue path shared by triggers and workers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Protocol

from sectorscope.core.logging import get_logger
from sectorscope.jobs.payloads import JobPayload, JobType

if TYPE_CHECKING:
    from sectorscope.repositories.job_status_orm import JobStatusTracker


logger = get_logger("jobs.queues")


@dataclass(frozen=True)
class QueueConfig:
    """Consumer limits for one stage queue."""

    name: str
    job_type: JobType
    task_name: str
    concurrency: int
    rate_limit_per_minute: int
    timeout_seconds: int
    attempts: int  # total substrate attempts, 1 = never auto-retried

    @property
    def max_retries(self) -> int:
        return self.attempts - 1

    @property
    def rate_limit(self) -> str:
        """Celery rate limit string."""
        return f"{self.rate_limit_per_minute}/m"


QUEUE_CONFIGS: dict[JobType, QueueConfig] = {
    JobType.SECTOR_RESEARCH: QueueConfig(
        name="sector-research",
        job_type=JobType.SECTOR_RESEARCH,
        task_name="pipeline.sector_research",
        concurrency=2,
        rate_limit_per_minute=5,
        timeout_seconds=15 * 60,
        attempts=2,
    ),
    JobType.STOCK_RANKING: QueueConfig(
        name="stock-ranking",
        job_type=JobType.STOCK_RANKING,
        task_name="pipeline.stock_ranking",
        concurrency=3,
        rate_limit_per_minute=5,
        timeout_seconds=5 * 60,
        attempts=3,
    ),
    JobType.STOCK_ANALYSIS: QueueConfig(
        name="stock-analysis",
        job_type=JobType.STOCK_ANALYSIS,
        task_name="pipeline.stock_analysis",
        concurrency=5,
        rate_limit_per_minute=10,
        timeout_seconds=15 * 60,
        attempts=1,
    ),
    JobType.JUDGE_REVIEW: QueueConfig(
        name="judge-review",
        job_type=JobType.JUDGE_REVIEW,
        task_name="pipeline.judge_review",
        concurrency=10,
        rate_limit_per_minute=20,
        timeout_seconds=5 * 60,
        attempts=3,
    ),
    JobType.FORMAT_INSIGHTS: QueueConfig(
        name="format-insights",
        job_type=JobType.FORMAT_INSIGHTS,
        task_name="pipeline.format_insights",
        concurrency=10,
        rate_limit_per_minute=20,
        timeout_seconds=3 * 60,
        attempts=3,
    ),
}


def get_queue_config(job_type: JobType | str) -> QueueConfig:
    return QUEUE_CONFIGS[JobType(job_type)]


@dataclass(frozen=True)
class JobOptions:
    """Per-enqueue options. Priority 0 is served first."""

    job_id: str
    priority: Optional[int] = None
    delay: Optional[float] = None  # seconds


class QueueBackend(Protocol):
    """Something that can durably publish a payload to a named queue."""

    def enqueue(
        self, config: QueueConfig, payload: JobPayload, options: JobOptions
    ) -> str: ...


class QueueSet:
    """Front door for adding work to the five stage queues.

    The JobStatus row is written before anything is published. A row that
    already exists means the job id was enqueued before, so the add is a
    no-op; this is how deterministic job ids deduplicate retries.
    """

    def __init__(self, tracker: JobStatusTracker, backend: QueueBackend):
        self.tracker = tracker
        self.backend = backend

    async def add(
        self,
        payload: JobPayload,
        *,
        job_id: Optional[str] = None,
        priority: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> str:
        """Enqueue a payload on its stage queue and return the job id.

        Without an explicit ``job_id`` a fresh one is generated, so the add
        is never deduplicated.
        """
        config = get_queue_config(payload.job_type)
        job_id = job_id or f"{payload.job_type}-{uuid.uuid4().hex}"

        created = await self.tracker.create(job_id, config.job_type.value, payload.related_id)
        if not created:
            logger.info(
                f"Job {job_id} already enqueued, skipping",
                extra={"extra_fields": {"queue": config.name}},
            )
            return job_id

        options = JobOptions(job_id=job_id, priority=priority, delay=delay)
        try:
            self.backend.enqueue(config, payload, options)
        except Exception:
            await self.tracker.discard(job_id)
            raise

        logger.info(
            f"Enqueued {config.job_type.value} job {job_id}",
            extra={
                "extra_fields": {
                    "queue": config.name,
                    "priority": priority,
                    "delay": delay,
                }
            },
        )
        return job_id
