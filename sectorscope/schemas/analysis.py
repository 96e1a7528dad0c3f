"""Schemas for sector analyses, sub-sectors, stocks and jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class StartAnalysisRequest(BaseModel):
    """Request to research a sector."""

    sector_name: str = Field(..., min_length=1, max_length=200, description="Sector to research", examples=["Clean Energy"])
    user_id: str = Field(default="anonymous", min_length=1, max_length=100, description="Owner of the analysis")

    @field_validator("sector_name")
    @classmethod
    def strip_sector_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("sector_name must not be blank")
        return stripped


class StartAnalysisResponse(BaseModel):
    sector_analysis_id: str
    status: str
    job_id: str


class JobCreated(BaseModel):
    job_id: str
    type: str
    stock_id: Optional[str] = None
    stock_analysis_id: Optional[str] = None


class ApproveSubSectorResponse(BaseModel):
    sub_sector_id: str
    jobs_created: List[JobCreated]
    message: str


class ReanalyzeStockResponse(BaseModel):
    stock_id: str
    stock_analysis_id: str
    job_id: str


class StockAnalysisOut(BaseModel):
    id: str
    status: str
    raw_analysis: str
    judge_review: str
    insights: Dict[str, Any] = Field(default_factory=dict, description="Structured insights (camelCase keys)")
    attempt_count: int
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class StockOut(BaseModel):
    id: str
    company_name: str
    ticker: Optional[str] = None
    rank: int = Field(..., description="1 = best; 0 = not ranked yet")
    preliminary_notes: str
    analysis: Optional[StockAnalysisOut] = None


class SubSectorOut(BaseModel):
    id: str
    name: str
    summary: str
    status: str
    stocks: List[StockOut] = Field(default_factory=list)


class SectorAnalysisOut(BaseModel):
    id: str
    user_id: str
    sector_name: str
    status: str
    full_report: str
    created_at: datetime
    updated_at: datetime
    sub_sectors: List[SubSectorOut] = Field(default_factory=list)


class StockDetailOut(StockOut):
    sub_sector_id: str
    sub_sector_name: str


class JobStatusOut(BaseModel):
    job_id: str
    job_type: str
    related_id: str
    status: str
    progress: int
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    task: Optional[Dict[str, Any]] = Field(default=None, description="Queue-level task state, when requested")
