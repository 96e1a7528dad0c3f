"""Sector research: discover sub-sectors and candidate companies."""

from __future__ import annotations

from typing import Any

from sectorscope.core.exceptions import NotFoundError
from sectorscope.jobs.payloads import JobType, SectorResearchJob
from sectorscope.jobs.workers.base import StageWorker
from sectorscope.pipeline.status import SectorStatus
from sectorscope.services.ai.parsing import parse_sector_report
from sectorscope.services.ai.prompts import sector_research_prompt


class SectorResearchWorker(StageWorker[SectorResearchJob]):
    """Researches a sector and stores its sub-sectors and unranked stocks.

    Nothing is enqueued afterwards; ranking waits for a user to approve a
    sub-sector.
    """

    job_type = JobType.SECTOR_RESEARCH
    failure_context = "Sector research failed"

    async def process(self, job_id: str, payload: SectorResearchJob) -> dict[str, Any]:
        analysis = await self.repository.update_sector_analysis(
            payload.sector_analysis_id, status=SectorStatus.IN_PROGRESS.value
        )
        if analysis is None:
            raise NotFoundError(f"Sector analysis {payload.sector_analysis_id} not found")
        await self.progress(job_id, 10)

        result = await self.ai.invoke(
            sector_research_prompt(payload.sector_name),
            web_search_enabled=True,
            max_output_tokens=16_000,
        )
        await self.progress(job_id, 60)

        sub_sectors = parse_sector_report(result.content)
        await self.progress(job_id, 70)

        created = await self.repository.complete_sector_research(
            payload.sector_analysis_id, result.content, sub_sectors
        )
        await self.progress(job_id, 90)

        return {
            "sector_analysis_id": payload.sector_analysis_id,
            "sub_sectors_created": len(created),
            "stocks_created": sum(len(s["stocks"]) for s in sub_sectors),
            "total_tokens": result.token_usage.total,
        }

    async def on_failure(self, payload: SectorResearchJob, message: str) -> None:
        await self.repository.update_sector_analysis(
            payload.sector_analysis_id, status=SectorStatus.FAILED.value
        )
