"""Judge review: approve an analysis, send it back, or give up on it."""

from __future__ import annotations

from typing import Any

from sectorscope.core.logging import get_logger
from sectorscope.jobs.payloads import (
    FormatInsightsJob,
    JobType,
    JudgeReviewJob,
    StockAnalysisJob,
    format_insights_job_id,
    stock_analysis_job_id,
)
from sectorscope.jobs.workers.base import StageWorker
from sectorscope.pipeline.status import (
    JUDGE_RETRY_DELAY,
    MAX_ANALYSIS_ATTEMPTS,
    AnalysisStatus,
)
from sectorscope.services.ai.parsing import parse_judge_verdict
from sectorscope.services.ai.prompts import judge_review_prompt


logger = get_logger("jobs.workers.judge")

REASON_EXCERPT_LIMIT = 500


class JudgeReviewWorker(StageWorker[JudgeReviewJob]):
    """Reviews an analysis and routes it.

    A rejection is a business outcome, not a job failure: the job completes
    whether the analysis is approved, retried or abandoned.
    """

    job_type = JobType.JUDGE_REVIEW
    failure_context = "Judge review failed"

    def describe(self, payload: JudgeReviewJob) -> str:
        return f"Judge review failed for {payload.company_name}"

    async def process(self, job_id: str, payload: JudgeReviewJob) -> dict[str, Any]:
        await self.progress(job_id, 20)

        result = await self.ai.invoke(
            judge_review_prompt(
                payload.company_name,
                payload.attempt_number,
                payload.raw_analysis,
                max_attempts=MAX_ANALYSIS_ATTEMPTS,
            ),
            web_search_enabled=False,
            max_output_tokens=4_000,
        )
        verdict = parse_judge_verdict(result.content)
        await self.progress(job_id, 70)

        await self.repository.update_stock_analysis(
            payload.stock_analysis_id, judge_review=verdict.review
        )

        if verdict.approved:
            await self.progress(job_id, 90)
            next_job_id = await self.queues.add(
                FormatInsightsJob(
                    stock_analysis_id=payload.stock_analysis_id,
                    raw_analysis=payload.raw_analysis,
                    judge_review=verdict.review,
                    company_name=payload.company_name,
                ),
                job_id=format_insights_job_id(payload.stock_analysis_id),
            )
            logger.info(f"Judge approved analysis for {payload.company_name}")
            return {"outcome": "approved", "next_job_id": next_job_id}

        logger.info(
            f"Judge rejected analysis for {payload.company_name} "
            f"(attempt {payload.attempt_number}/{MAX_ANALYSIS_ATTEMPTS})"
        )

        if payload.attempt_number < MAX_ANALYSIS_ATTEMPTS:
            await self.progress(job_id, 90)
            next_attempt = payload.attempt_number + 1
            sub_sector_name = payload.sub_sector_name or await self._sub_sector_name(payload)
            next_job_id = await self.queues.add(
                StockAnalysisJob(
                    stock_id=payload.stock_id,
                    stock_analysis_id=payload.stock_analysis_id,
                    company_name=payload.company_name,
                    ticker=payload.ticker,
                    sub_sector_name=sub_sector_name,
                    attempt_number=next_attempt,
                ),
                job_id=stock_analysis_job_id(payload.stock_analysis_id, next_attempt),
                delay=JUDGE_RETRY_DELAY,
            )
            return {"outcome": "retry_queued", "next_job_id": next_job_id}

        excerpt = verdict.review.strip()[:REASON_EXCERPT_LIMIT]
        await self.repository.update_stock_analysis(
            payload.stock_analysis_id,
            status=AnalysisStatus.REVIEW_FAILED.value,
            failure_reason=(
                f"Judge rejected the analysis {MAX_ANALYSIS_ATTEMPTS} times; "
                f"maximum retries exhausted. Last review: {excerpt}"
            ),
        )
        logger.warning(f"Max retry attempts exhausted for {payload.company_name}")
        return {"outcome": "max_retries_exhausted"}

    async def _sub_sector_name(self, payload: JudgeReviewJob) -> str:
        stock = await self.repository.get_stock(payload.stock_id)
        return stock["sub_sector_name"] if stock else "Unknown"
