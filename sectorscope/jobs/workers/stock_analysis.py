"""Stock analysis: long-form research report for one company."""

from __future__ import annotations

from typing import Any

from sectorscope.core.exceptions import NotFoundError, ValidationError
from sectorscope.jobs.payloads import (
    JobType,
    JudgeReviewJob,
    StockAnalysisJob,
    judge_review_job_id,
)
from sectorscope.jobs.workers.base import StageWorker
from sectorscope.pipeline.status import MAX_ANALYSIS_ATTEMPTS, AnalysisStatus
from sectorscope.services.ai.prompts import stock_analysis_prompt


class StockAnalysisWorker(StageWorker[StockAnalysisJob]):
    """Writes the raw analysis and hands it to the judge.

    The queue never retries this stage on its own. Another attempt only
    happens through a judge rejection or a manual re-trigger.
    """

    job_type = JobType.STOCK_ANALYSIS
    failure_context = "Stock analysis failed"

    def describe(self, payload: StockAnalysisJob) -> str:
        return f"Stock analysis failed for {payload.company_name}"

    async def process(self, job_id: str, payload: StockAnalysisJob) -> dict[str, Any]:
        attempt = payload.attempt_number
        if attempt > MAX_ANALYSIS_ATTEMPTS:
            raise ValidationError(
                f"Attempt {attempt} exceeds the limit of {MAX_ANALYSIS_ATTEMPTS}"
            )

        existing = await self.repository.get_stock_analysis(payload.stock_analysis_id)
        if existing is None:
            raise NotFoundError(f"Stock analysis {payload.stock_analysis_id} not found")
        # Feed the rejection back so a retry is not a repeat of the last attempt
        previous_review = existing["judge_review"] if attempt > 1 else None

        await self.repository.update_stock_analysis(
            payload.stock_analysis_id,
            status=AnalysisStatus.ANALYZING.value,
            attempt_count=attempt,
        )
        await self.progress(job_id, 10)

        result = await self.ai.invoke(
            stock_analysis_prompt(
                payload.company_name,
                payload.ticker,
                payload.sub_sector_name,
                attempt,
                previous_review=previous_review,
            ),
            web_search_enabled=True,
            max_output_tokens=16_000,
        )
        await self.progress(job_id, 80)

        await self.repository.update_stock_analysis(
            payload.stock_analysis_id, raw_analysis=result.content
        )
        await self.progress(job_id, 90)

        judge_job_id = await self.queues.add(
            JudgeReviewJob(
                stock_analysis_id=payload.stock_analysis_id,
                stock_id=payload.stock_id,
                raw_analysis=result.content,
                company_name=payload.company_name,
                attempt_number=attempt,
                ticker=payload.ticker,
                sub_sector_name=payload.sub_sector_name,
            ),
            job_id=judge_review_job_id(payload.stock_analysis_id, attempt),
        )

        return {
            "stock_analysis_id": payload.stock_analysis_id,
            "attempt": attempt,
            "judge_job_id": judge_job_id,
            "total_tokens": result.token_usage.total,
        }

    async def on_failure(self, payload: StockAnalysisJob, message: str) -> None:
        await self.repository.update_stock_analysis(
            payload.stock_analysis_id,
            status=AnalysisStatus.REVIEW_FAILED.value,
            failure_reason=message,
        )
