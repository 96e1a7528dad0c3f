"""Sector analysis, approval, re-analysis and job routes."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Path, Query, Request, status
from fastapi.responses import StreamingResponse

from sectorscope.api.deps import get_publisher, get_repository, get_tracker, get_triggers
from sectorscope.core.exceptions import NotFoundError
from sectorscope.core.logging import get_logger
from sectorscope.pipeline.triggers import PipelineTriggers
from sectorscope.repositories.analysis_orm import AnalysisRepository
from sectorscope.repositories.job_status_orm import JobStatusTracker
from sectorscope.schemas.analysis import (
    ApproveSubSectorResponse,
    JobStatusOut,
    ReanalyzeStockResponse,
    SectorAnalysisOut,
    StartAnalysisRequest,
    StartAnalysisResponse,
    StockDetailOut,
    SubSectorOut,
)
from sectorscope.streaming import SSE_HEADERS, UpdateStreamPublisher


logger = get_logger("routes.analysis")

router = APIRouter(tags=["Analysis"])

def _id_path():
    # FastAPI binds the parameter name onto the FieldInfo, so each route needs its own
    return Path(..., min_length=1, max_length=64)


@router.post(
    "/analysis/start",
    response_model=StartAnalysisResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a sector analysis",
    description="Create a sector analysis and queue its research job.",
)
async def start_analysis(
    payload: StartAnalysisRequest,
    triggers: PipelineTriggers = Depends(get_triggers),
) -> StartAnalysisResponse:
    result = await triggers.start_sector_analysis(payload.sector_name, payload.user_id)
    analysis = result["sector_analysis"]
    return StartAnalysisResponse(
        sector_analysis_id=analysis["id"],
        status=analysis["status"],
        job_id=result["job_id"],
    )


@router.get(
    "/analysis/{sector_analysis_id}",
    response_model=SectorAnalysisOut,
    summary="Get a sector analysis",
    description="Full tree: sub-sectors, their ranked stocks and stock analyses.",
)
async def get_analysis(
    sector_analysis_id: str = _id_path(),
    repository: AnalysisRepository = Depends(get_repository),
) -> SectorAnalysisOut:
    tree = await repository.get_sector_analysis_tree(sector_analysis_id)
    if tree is None:
        raise NotFoundError("Sector analysis not found")
    return SectorAnalysisOut.model_validate(tree)


@router.get(
    "/analysis/{sector_analysis_id}/stream",
    summary="Stream job updates",
    description="Server-sent events for every job belonging to the analysis tree.",
    response_class=StreamingResponse,
)
async def stream_analysis(
    request: Request,
    sector_analysis_id: str = _id_path(),
    repository: AnalysisRepository = Depends(get_repository),
    publisher: UpdateStreamPublisher = Depends(get_publisher),
) -> StreamingResponse:
    if await repository.get_sector_analysis(sector_analysis_id) is None:
        raise NotFoundError("Sector analysis not found")

    logger.info(f"Update stream opened for {sector_analysis_id}")
    return StreamingResponse(
        publisher.stream(sector_analysis_id, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post(
    "/subsector/{sub_sector_id}/approve",
    response_model=ApproveSubSectorResponse,
    summary="Approve a sub-sector",
    description="Queue ranking, or deep analysis of the top ranked stocks.",
)
async def approve_sub_sector(
    sub_sector_id: str = _id_path(),
    triggers: PipelineTriggers = Depends(get_triggers),
) -> ApproveSubSectorResponse:
    result = await triggers.approve_sub_sector(sub_sector_id)
    return ApproveSubSectorResponse.model_validate(result)


@router.get(
    "/subsector/{sub_sector_id}/stocks",
    response_model=SubSectorOut,
    summary="List a sub-sector's stocks",
)
async def get_sub_sector_stocks(
    sub_sector_id: str = _id_path(),
    repository: AnalysisRepository = Depends(get_repository),
) -> SubSectorOut:
    sub_sector = await repository.get_sub_sector(sub_sector_id)
    if sub_sector is None:
        raise NotFoundError("Sub-sector not found")
    return SubSectorOut.model_validate(sub_sector)


@router.post(
    "/stock/{stock_id}/reanalyze",
    response_model=ReanalyzeStockResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Analyse a stock manually",
    description="Queue a first analysis for a stock outside the automatic top picks.",
)
async def reanalyze_stock(
    stock_id: str = _id_path(),
    triggers: PipelineTriggers = Depends(get_triggers),
) -> ReanalyzeStockResponse:
    result = await triggers.reanalyze_stock(stock_id)
    return ReanalyzeStockResponse(
        stock_id=result["stock_id"],
        stock_analysis_id=result["stock_analysis_id"],
        job_id=result["job_id"],
    )


@router.get(
    "/stock/{stock_id}/analysis",
    response_model=StockDetailOut,
    summary="Get a stock and its analysis",
)
async def get_stock_analysis(
    stock_id: str = _id_path(),
    repository: AnalysisRepository = Depends(get_repository),
) -> StockDetailOut:
    stock = await repository.get_stock(stock_id)
    if stock is None:
        raise NotFoundError("Stock not found")
    return StockDetailOut.model_validate(stock)


@router.get(
    "/jobs/{job_id}",
    response_model=JobStatusOut,
    summary="Get job status",
)
async def get_job_status(
    job_id: str = Path(..., min_length=1, max_length=200),
    include_task: bool = Query(False, description="Also query the Celery result backend"),
    tracker: JobStatusTracker = Depends(get_tracker),
) -> JobStatusOut:
    job = await tracker.get(job_id)
    if job is None:
        raise NotFoundError("Job not found")

    out = JobStatusOut.model_validate(job)
    if include_task:
        from sectorscope.jobs.dispatch import get_task_status

        out.task = await asyncio.to_thread(get_task_status, job_id)
    return out
