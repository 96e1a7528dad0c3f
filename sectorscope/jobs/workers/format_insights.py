"""Format insights: structured dashboard record plus the completion cascade."""

from __future__ import annotations

from typing import Any

from sectorscope.jobs.payloads import FormatInsightsJob, JobType
from sectorscope.jobs.workers.base import StageWorker
from sectorscope.pipeline.status import AnalysisStatus, complete_sub_sector_if_done
from sectorscope.services.ai.parsing import parse_insights
from sectorscope.services.ai.prompts import format_insights_prompt


class FormatInsightsWorker(StageWorker[FormatInsightsJob]):
    job_type = JobType.FORMAT_INSIGHTS
    failure_context = "Format insights failed"

    def describe(self, payload: FormatInsightsJob) -> str:
        return f"Format insights failed for {payload.company_name}"

    async def process(self, job_id: str, payload: FormatInsightsJob) -> dict[str, Any]:
        await self.progress(job_id, 20)

        result = await self.ai.invoke(
            format_insights_prompt(
                payload.company_name, payload.raw_analysis, payload.judge_review
            ),
            web_search_enabled=False,
            max_output_tokens=4_000,
        )
        insights = parse_insights(result.content)
        await self.progress(job_id, 70)

        await self.repository.update_stock_analysis(
            payload.stock_analysis_id,
            insights=insights.to_storage(),
            status=AnalysisStatus.COMPLETED.value,
            failure_reason=None,
        )
        await self.progress(job_id, 90)

        sub_sector_completed = await complete_sub_sector_if_done(
            self.repository, payload.stock_analysis_id
        )

        return {
            "stock_analysis_id": payload.stock_analysis_id,
            "recommendation": insights.recommendation.value,
            "sub_sector_completed": sub_sector_completed,
        }

    async def on_failure(self, payload: FormatInsightsJob, message: str) -> None:
        await self.repository.update_stock_analysis(
            payload.stock_analysis_id,
            status=AnalysisStatus.REVIEW_FAILED.value,
            failure_reason=message,
        )
