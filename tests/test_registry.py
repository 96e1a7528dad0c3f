"""Tests for the pipeline registry."""

from __future__ import annotations

import asyncio

import pytest

from sectorscope.core.exceptions import JobError
from sectorscope.jobs.payloads import SectorResearchJob
from sectorscope.jobs.registry import PipelineRegistry
from sectorscope.jobs.workers import WORKER_CLASSES, SectorResearchWorker

from conftest import CLEAN_ENERGY_REPORT, ScriptedAI


class TestConstruction:
    def _workers(self, repository, tracker, queues, ai, classes):
        return [cls(repository, tracker, queues, ai) for cls in classes]

    def test_duplicate_worker_rejected(self, repository, tracker, queues, ai):
        workers = self._workers(
            repository, tracker, queues, ai, list(WORKER_CLASSES) + [SectorResearchWorker]
        )
        with pytest.raises(ValueError, match="Duplicate"):
            PipelineRegistry(repository, tracker, queues, ai, workers)

    def test_missing_worker_rejected(self, repository, tracker, queues, ai):
        workers = self._workers(repository, tracker, queues, ai, WORKER_CLASSES[1:])
        with pytest.raises(ValueError, match="sector_research"):
            PipelineRegistry(repository, tracker, queues, ai, workers)

    def test_one_worker_per_stage(self, registry):
        assert registry.worker_for("judge_review").config.name == "judge-review"
        assert registry.worker_for("stock_analysis").timeout == 900

    def test_timeout_override(self, backend, repository, tracker, ai):
        from sectorscope.jobs.payloads import JobType

        registry = PipelineRegistry.create(
            backend, repository=repository, tracker=tracker, ai=ai,
            timeouts={JobType.FORMAT_INSIGHTS: 12},
        )
        assert registry.worker_for(JobType.FORMAT_INSIGHTS).timeout == 12


class TestShutdown:
    @pytest.mark.asyncio
    async def test_closes_ai_client(self, registry, ai):
        await registry.shutdown(timeout=1)
        assert ai.closed is True

    @pytest.mark.asyncio
    async def test_refuses_new_jobs(self, registry):
        await registry.shutdown(timeout=1)
        payload = SectorResearchJob(sector_analysis_id="sa", user_id="u", sector_name="Energy")
        with pytest.raises(JobError) as exc_info:
            await registry.run("job-1", payload)
        assert exc_info.value.error_code == "SHUTTING_DOWN"

    @pytest.mark.asyncio
    async def test_waits_for_running_job(self, backend, repository, tracker):
        release = asyncio.Event()

        class GatedAI(ScriptedAI):
            async def invoke(self, prompt, **kwargs):
                await release.wait()
                return await super().invoke(prompt, **kwargs)

        ai = GatedAI(replies={"sector_research": CLEAN_ENERGY_REPORT})
        registry = PipelineRegistry.create(backend, repository=repository, tracker=tracker, ai=ai)

        analysis = await repository.create_sector_analysis("user-1", "Clean Energy")
        await tracker.create("research-1", "sector_research", analysis["id"])
        payload = SectorResearchJob(
            sector_analysis_id=analysis["id"], user_id="user-1", sector_name="Clean Energy"
        )

        job = asyncio.create_task(registry.run("research-1", payload))
        while registry.in_flight == 0:
            await asyncio.sleep(0)

        shutdown = asyncio.create_task(registry.shutdown(timeout=5))
        await asyncio.sleep(0.01)
        assert not shutdown.done()
        assert ai.closed is False

        release.set()
        await job
        await shutdown

        assert ai.closed is True
        assert (await tracker.get("research-1"))["status"] == "completed"


class TestInterruptedJob:
    @pytest.mark.asyncio
    async def test_fail_rolls_back_and_marks_job(self, registry, repository, tracker):
        from sectorscope.jobs.errors import ErrorKind, JobTimeoutError

        analysis = await repository.create_sector_analysis("user-1", "Clean Energy")
        await tracker.create("research-1", "sector_research", analysis["id"])
        await tracker.mark_active("research-1")
        payload = SectorResearchJob(
            sector_analysis_id=analysis["id"], user_id="user-1", sector_name="Clean Energy"
        )

        failure = await registry.fail("research-1", payload, JobTimeoutError("time limit"))

        assert failure.classification.kind == ErrorKind.NETWORK_ERROR
        job = await tracker.get("research-1")
        assert job["status"] == "failed"
        assert "time limit" in job["error_message"]
        assert (await repository.get_sector_analysis(analysis["id"]))["status"] == "failed"
