"""Pipeline registry: the collaborators and stage workers of one process."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any, Optional

from sectorscope.core.exceptions import JobError
from sectorscope.core.logging import get_logger, job_context
from sectorscope.jobs.errors import StageFailedError
from sectorscope.jobs.payloads import JobPayload, JobType
from sectorscope.jobs.queues import QueueBackend, QueueSet
from sectorscope.jobs.workers import WORKER_CLASSES, StageWorker
from sectorscope.repositories.analysis_orm import AnalysisRepository
from sectorscope.repositories.job_status_orm import JobStatusTracker
from sectorscope.services.ai.client import AIClient


logger = get_logger("jobs.registry")


class PipelineRegistry:
    """Owns the repository, tracker, queue set, AI client and stage workers.

    Built once per worker process. ``shutdown`` refuses new jobs, waits for
    running ones and then releases the AI client.

    Usage:
        registry = PipelineRegistry.create(backend)
        await registry.run(job_id, payload)
        await registry.shutdown(timeout=30)
    """

    def __init__(
        self,
        repository: AnalysisRepository,
        tracker: JobStatusTracker,
        queues: QueueSet,
        ai: AIClient,
        workers: Iterable[StageWorker],
    ):
        self.repository = repository
        self.tracker = tracker
        self.queues = queues
        self.ai = ai
        self._workers: dict[JobType, StageWorker] = {}
        for worker in workers:
            if worker.job_type in self._workers:
                raise ValueError(f"Duplicate worker for {worker.job_type.value}")
            self._workers[worker.job_type] = worker

        missing = set(JobType) - set(self._workers)
        if missing:
            names = ", ".join(sorted(t.value for t in missing))
            raise ValueError(f"No worker registered for: {names}")

        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closing = False

    @classmethod
    def create(
        cls,
        backend: QueueBackend,
        *,
        repository: Optional[AnalysisRepository] = None,
        tracker: Optional[JobStatusTracker] = None,
        ai: Optional[AIClient] = None,
        timeouts: Optional[dict[JobType, float]] = None,
    ) -> PipelineRegistry:
        """Wire the default collaborators and one worker per stage."""
        repository = repository or AnalysisRepository()
        tracker = tracker or JobStatusTracker()
        ai = ai or AIClient()
        queues = QueueSet(tracker, backend)
        timeouts = timeouts or {}
        workers = [
            worker_cls(repository, tracker, queues, ai, timeout=timeouts.get(worker_cls.job_type))
            for worker_cls in WORKER_CLASSES
        ]
        return cls(repository, tracker, queues, ai, workers)

    def worker_for(self, job_type: JobType | str) -> StageWorker:
        return self._workers[JobType(job_type)]

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def run(self, job_id: str, payload: JobPayload) -> dict[str, Any]:
        """Run a job on its stage worker."""
        if self._closing:
            raise JobError(
                f"Registry is shutting down, refusing job {job_id}",
                error_code="SHUTTING_DOWN",
            )

        worker = self.worker_for(payload.job_type)
        self._in_flight += 1
        self._idle.clear()
        try:
            return await worker.run(job_id, payload)
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def fail(self, job_id: str, payload: JobPayload, exc: Exception) -> StageFailedError:
        """Record a failure that interrupted a job from outside its run."""
        worker = self.worker_for(payload.job_type)
        with job_context(job_id, worker.job_type.value):
            return await worker.fail(job_id, payload, exc)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop accepting jobs, drain running ones and close the AI client."""
        self._closing = True
        if self._in_flight:
            logger.info(f"Waiting for {self._in_flight} running jobs to finish")
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Shutdown timed out with {self._in_flight} jobs still running")
        await self.ai.close()
        logger.info("Pipeline registry shut down")
