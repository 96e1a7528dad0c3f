"""External triggers that start or resume pipeline work.

These are the only places work enters the pipeline from outside a worker:
starting a sector analysis, approving a sub-sector, and manually
re-analysing a single stock.
"""

from __future__ import annotations

from typing import Any

from sectorscope.core.exceptions import BadRequestError, ConflictError, NotFoundError
from sectorscope.core.logging import get_logger
from sectorscope.jobs.payloads import (
    JobType,
    RankingCandidate,
    SectorResearchJob,
    StockAnalysisJob,
    StockRankingJob,
    stock_analysis_job_id,
)
from sectorscope.jobs.queues import QueueSet
from sectorscope.pipeline.status import (
    SectorStatus,
    SubSectorStatus,
    top_ranked_stocks,
)
from sectorscope.repositories.analysis_orm import AnalysisRepository


logger = get_logger("pipeline.triggers")

# Highest priority step of the broker queues
MAX_PRIORITY = 9


class PipelineTriggers:
    """Entry and approval operations used by the HTTP layer."""

    def __init__(self, repository: AnalysisRepository, queues: QueueSet):
        self.repository = repository
        self.queues = queues

    async def start_sector_analysis(self, sector_name: str, user_id: str) -> dict[str, Any]:
        """Create a sector analysis and queue its research job."""
        analysis = await self.repository.create_sector_analysis(user_id, sector_name)

        try:
            job_id = await self.queues.add(
                SectorResearchJob(
                    sector_analysis_id=analysis["id"],
                    user_id=user_id,
                    sector_name=sector_name,
                )
            )
        except Exception:
            await self.repository.update_sector_analysis(
                analysis["id"], status=SectorStatus.FAILED.value
            )
            raise

        logger.info(f"Started sector analysis {analysis['id']} for '{sector_name}'")
        return {"sector_analysis": analysis, "job_id": job_id}

    async def approve_sub_sector(self, sub_sector_id: str) -> dict[str, Any]:
        """Approve a sub-sector for deep analysis.

        Unranked stocks go through the ranking stage first. Already ranked
        sub-sectors skip straight to analysing their top stocks.
        """
        sub_sector = await self.repository.get_sub_sector(sub_sector_id)
        if sub_sector is None:
            raise NotFoundError("Sub-sector not found")
        if sub_sector["status"] != SubSectorStatus.PENDING.value:
            raise ConflictError(
                f"Sub-sector is already {sub_sector['status']}",
                details={"status": sub_sector["status"]},
            )

        stocks = sub_sector["stocks"]
        if not stocks:
            raise BadRequestError("Sub-sector has no candidate stocks")

        await self.repository.update_sub_sector(
            sub_sector_id, status=SubSectorStatus.APPROVED.value
        )
        try:
            return await self._queue_approved_work(sub_sector)
        except Exception:
            # Back to pending so the approval can be repeated; re-queued jobs dedupe by id
            await self.repository.update_sub_sector(
                sub_sector_id, status=SubSectorStatus.PENDING.value
            )
            logger.warning(f"Approval of sub-sector {sub_sector_id} rolled back")
            raise

    async def _queue_approved_work(self, sub_sector: dict[str, Any]) -> dict[str, Any]:
        sub_sector_id = sub_sector["id"]
        stocks = sub_sector["stocks"]

        if any(stock["rank"] == 0 for stock in stocks):
            job_id = await self.queues.add(
                StockRankingJob(
                    sub_sector_id=sub_sector_id,
                    stocks=[
                        RankingCandidate(
                            id=stock["id"],
                            company_name=stock["company_name"],
                            ticker=stock["ticker"],
                            preliminary_notes=stock["preliminary_notes"],
                        )
                        for stock in stocks
                    ],
                )
            )
            return {
                "sub_sector_id": sub_sector_id,
                "jobs_created": [{"job_id": job_id, "type": JobType.STOCK_RANKING.value}],
                "message": "Stock ranking job created",
            }

        jobs_created = []
        for stock in top_ranked_stocks(stocks):
            jobs_created.append(await self._queue_analysis(stock, sub_sector["name"]))

        await self.repository.update_sub_sector(
            sub_sector_id, status=SubSectorStatus.ANALYZING.value
        )
        return {
            "sub_sector_id": sub_sector_id,
            "jobs_created": jobs_created,
            "message": f"{len(jobs_created)} stock analysis jobs created",
        }

    async def reanalyze_stock(self, stock_id: str) -> dict[str, Any]:
        """Queue a first analysis for a stock that has none.

        This is the manual path for stocks ranked below the automatic
        fan-out. A stock that already has an analysis is rejected.
        """
        stock = await self.repository.get_stock(stock_id)
        if stock is None:
            raise NotFoundError("Stock not found")
        if stock["analysis"] is not None:
            raise ConflictError(
                "Analysis already exists for this stock",
                details={"stock_analysis_id": stock["analysis"]["id"]},
            )

        job = await self._queue_analysis(stock, stock["sub_sector_name"], require_new=True)
        return {"stock_id": stock_id, **job}

    async def _queue_analysis(
        self,
        stock: dict[str, Any],
        sub_sector_name: str,
        *,
        require_new: bool = False,
    ) -> dict[str, Any]:
        analysis, created = await self.repository.ensure_stock_analysis(stock["id"])
        if require_new and not created:
            raise ConflictError("Analysis already exists for this stock")

        job_id = await self.queues.add(
            StockAnalysisJob(
                stock_id=stock["id"],
                stock_analysis_id=analysis["id"],
                company_name=stock["company_name"],
                ticker=stock["ticker"],
                sub_sector_name=sub_sector_name,
                attempt_number=1,
            ),
            job_id=stock_analysis_job_id(analysis["id"], 1),
            priority=min(stock["rank"], MAX_PRIORITY) or None,
        )
        return {
            "job_id": job_id,
            "type": JobType.STOCK_ANALYSIS.value,
            "stock_id": stock["id"],
            "stock_analysis_id": analysis["id"],
        }
