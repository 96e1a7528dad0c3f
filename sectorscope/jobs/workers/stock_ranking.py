"""Stock ranking: order a sub-sector's candidates and fan out the top five."""

from __future__ import annotations

from typing import Any

from sectorscope.core.exceptions import NotFoundError, ValidationError
from sectorscope.jobs.payloads import (
    JobType,
    StockAnalysisJob,
    StockRankingJob,
    stock_analysis_job_id,
)
from sectorscope.jobs.workers.base import StageWorker
from sectorscope.pipeline.status import SubSectorStatus, top_ranked_stocks
from sectorscope.services.ai.parsing import assign_ranks, parse_ranking
from sectorscope.services.ai.prompts import stock_ranking_prompt


class StockRankingWorker(StageWorker[StockRankingJob]):
    job_type = JobType.STOCK_RANKING
    failure_context = "Stock ranking failed"

    async def process(self, job_id: str, payload: StockRankingJob) -> dict[str, Any]:
        if not payload.stocks:
            raise ValidationError("No candidate stocks to rank")

        sub_sector = await self.repository.update_sub_sector(
            payload.sub_sector_id, status=SubSectorStatus.ANALYZING.value
        )
        if sub_sector is None:
            raise NotFoundError(f"Sub-sector {payload.sub_sector_id} not found")
        await self.progress(job_id, 20)

        candidates = [stock.model_dump() for stock in payload.stocks]
        result = await self.ai.invoke(
            stock_ranking_prompt(sub_sector["name"], candidates),
            web_search_enabled=False,
            max_output_tokens=2_000,
        )
        ranks = assign_ranks([stock.id for stock in payload.stocks], parse_ranking(result.content))
        await self.progress(job_id, 60)

        stocks = await self.repository.set_stock_ranks(payload.sub_sector_id, ranks)
        await self.progress(job_id, 70)

        top = top_ranked_stocks(stocks)
        analyses = []
        for stock in top:
            analysis, _ = await self.repository.ensure_stock_analysis(stock["id"])
            analyses.append((stock, analysis))
        await self.progress(job_id, 80)

        job_ids = []
        for stock, analysis in analyses:
            job_ids.append(
                await self.queues.add(
                    StockAnalysisJob(
                        stock_id=stock["id"],
                        stock_analysis_id=analysis["id"],
                        company_name=stock["company_name"],
                        ticker=stock["ticker"],
                        sub_sector_name=sub_sector["name"],
                        attempt_number=1,
                    ),
                    job_id=stock_analysis_job_id(analysis["id"], 1),
                    priority=stock["rank"],
                )
            )

        return {
            "sub_sector_id": payload.sub_sector_id,
            "total_stocks": len(stocks),
            "analysis_jobs_queued": len(job_ids),
        }

    async def on_failure(self, payload: StockRankingJob, message: str) -> None:
        await self.repository.update_sub_sector(
            payload.sub_sector_id, status=SubSectorStatus.PENDING.value
        )
