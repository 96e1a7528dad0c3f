"""Job payload contracts, one tagged variant per pipeline stage.

Payloads are self-sufficient: a worker never needs state from the stage
that enqueued it beyond what is persisted or carried here. They travel as
plain JSON dicts through Celery and are validated back with
``parse_payload``.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class JobType(str, Enum):
    """Pipeline job types. Values appear in JobStatus rows and stream events."""

    SECTOR_RESEARCH = "sector_research"
    STOCK_RANKING = "stock_ranking"
    STOCK_ANALYSIS = "stock_analysis"
    JUDGE_REVIEW = "judge_review"
    FORMAT_INSIGHTS = "format_insights"


class _Payload(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def related_id(self) -> str:
        raise NotImplementedError

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class SectorResearchJob(_Payload):
    job_type: Literal["sector_research"] = "sector_research"
    sector_analysis_id: str
    user_id: str
    sector_name: str

    @property
    def related_id(self) -> str:
        return self.sector_analysis_id


class RankingCandidate(BaseModel):
    """A stock as handed to the ranking stage."""

    model_config = {"frozen": True}

    id: str
    company_name: str
    ticker: Optional[str] = None
    preliminary_notes: str = ""


class StockRankingJob(_Payload):
    job_type: Literal["stock_ranking"] = "stock_ranking"
    sub_sector_id: str
    stocks: list[RankingCandidate]

    @property
    def related_id(self) -> str:
        return self.sub_sector_id


class StockAnalysisJob(_Payload):
    job_type: Literal["stock_analysis"] = "stock_analysis"
    stock_id: str
    stock_analysis_id: str
    company_name: str
    ticker: Optional[str] = None
    sub_sector_name: str
    attempt_number: int = Field(default=1, ge=1)

    @property
    def related_id(self) -> str:
        return self.stock_id


class JudgeReviewJob(_Payload):
    job_type: Literal["judge_review"] = "judge_review"
    stock_analysis_id: str
    stock_id: str
    raw_analysis: str
    company_name: str
    attempt_number: int = Field(ge=1)
    # Carried so that a rejected analysis is retried with the original values
    ticker: Optional[str] = None
    sub_sector_name: str = ""

    @property
    def related_id(self) -> str:
        return self.stock_analysis_id


class FormatInsightsJob(_Payload):
    job_type: Literal["format_insights"] = "format_insights"
    stock_analysis_id: str
    raw_analysis: str
    judge_review: str
    company_name: str

    @property
    def related_id(self) -> str:
        return self.stock_analysis_id


JobPayload = Annotated[
    Union[
        SectorResearchJob,
        StockRankingJob,
        StockAnalysisJob,
        JudgeReviewJob,
        FormatInsightsJob,
    ],
    Field(discriminator="job_type"),
]

_payload_adapter: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_payload(data: dict[str, Any]) -> JobPayload:
    """Validate a wire-form payload into its typed variant."""
    return _payload_adapter.validate_python(data)


def stock_analysis_job_id(stock_analysis_id: str, attempt: int) -> str:
    return f"stock-{stock_analysis_id}-attempt-{attempt}"


def judge_review_job_id(stock_analysis_id: str, attempt: int) -> str:
    return f"judge-{stock_analysis_id}-{attempt}"


def format_insights_job_id(stock_analysis_id: str) -> str:
    return f"format-{stock_analysis_id}"
