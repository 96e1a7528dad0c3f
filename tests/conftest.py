"""Pytest configuration and fixtures.

Every test gets its own SQLite database (aiosqlite) and a recording queue
backend in place of Celery. ``drain`` plays the role of the workers: it
runs queued jobs through the pipeline registry until nothing is left.
"""

from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Callable, Optional, Union

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from sectorscope.database.orm import Base
from sectorscope.jobs.errors import StageFailedError
from sectorscope.jobs.payloads import JobPayload, parse_payload
from sectorscope.jobs.queues import JobOptions, QueueConfig, QueueSet
from sectorscope.jobs.registry import PipelineRegistry
from sectorscope.pipeline.triggers import PipelineTriggers
from sectorscope.repositories.analysis_orm import AnalysisRepository
from sectorscope.repositories.job_status_orm import JobStatusTracker
from sectorscope.services.ai.client import AIResult, TokenUsage


# =============================================================================
# Queue backend
# =============================================================================


@dataclass
class SentJob:
    config: QueueConfig
    payload: JobPayload
    options: JobOptions

    @property
    def job_id(self) -> str:
        return self.options.job_id


class RecordingQueueBackend:
    """Queue backend that keeps published jobs in memory."""

    def __init__(self) -> None:
        self.sent: list[SentJob] = []
        self.pending: deque[SentJob] = deque()
        self.fail_with: Optional[Exception] = None

    def enqueue(self, config: QueueConfig, payload: JobPayload, options: JobOptions) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        job = SentJob(config, payload, options)
        self.sent.append(job)
        self.pending.append(job)
        return options.job_id

    def sent_to(self, queue_name: str) -> list[SentJob]:
        return [job for job in self.sent if job.config.name == queue_name]


# =============================================================================
# Scripted AI collaborator
# =============================================================================

# Each prompt builder opens with its own role line
STAGE_MARKERS = {
    "sector_research": "running sector-wide research",
    "stock_ranking": "portfolio strategist ranking",
    "stock_analysis": "senior equity research analyst writing",
    "judge_review": "senior research director reviewing",
    "format_insights": "extracting structured data",
}

Reply = Union[str, Exception, Callable[[str], str]]


def stage_of(prompt: str) -> str:
    for stage, marker in STAGE_MARKERS.items():
        if marker in prompt:
            return stage
    raise AssertionError(f"Unrecognized prompt: {prompt[:80]!r}")


@dataclass
class ScriptedAI:
    """Stands in for AIClient, answering per stage.

    A stage's reply is a string, an exception to raise, or a callable taking
    the prompt. A list of replies is consumed one per call, the last one
    repeating.
    """

    replies: dict[str, Union[Reply, list[Reply]]] = field(default_factory=dict)
    calls: list[dict[str, Any]] = field(default_factory=list)
    closed: bool = False

    async def invoke(
        self,
        prompt: str,
        *,
        web_search_enabled: bool = False,
        max_output_tokens: int = 16_000,
        on_progress: Any = None,
    ) -> AIResult:
        stage = stage_of(prompt)
        self.calls.append(
            {"stage": stage, "prompt": prompt, "web_search_enabled": web_search_enabled}
        )

        reply = self.replies[stage]
        if isinstance(reply, list):
            reply = reply.pop(0) if len(reply) > 1 else reply[0]
        if isinstance(reply, Exception):
            raise reply
        content = reply(prompt) if callable(reply) else reply
        return AIResult(content=content, token_usage=TokenUsage(100, 200, 300))

    async def close(self) -> None:
        self.closed = True

    def calls_for(self, stage: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["stage"] == stage]


# =============================================================================
# Canned AI output
# =============================================================================


def sector_report(sub_sectors: dict[str, list[tuple[str, str]]]) -> str:
    """Build a research report in the format the parser reads."""
    parts = ["# Sector Research\n\nIntro paragraph.\n"]
    for name, companies in sub_sectors.items():
        parts.append(f"---\n## Sub-sector: {name}\n\n{name} is growing quickly.\n")
        parts.append("**Key Trends:**\n- Falling costs\n")
        for rank, (company, ticker) in enumerate(companies, start=1):
            parts.append(
                f"### Rank {rank}/10: {company} ({ticker})\n{company} looks promising.\n"
            )
    return "\n".join(parts)


CLEAN_ENERGY_REPORT = sector_report(
    {
        "Residential Solar": [
            ("Enphase Energy", "NASDAQ: ENPH"),
            ("SolarEdge", "SEDG"),
            ("Sunrun", "RUN"),
        ],
        "Grid Storage": [
            ("Fluence Energy", "FLNC"),
            ("Form Energy", "Private"),
        ],
        "Wind Power": [
            ("Vestas", "VWS.CO"),
            ("Orsted", "ORSTED.CO"),
        ],
        "Green Hydrogen": [
            ("Plug Power", "PLUG"),
            ("Bloom Energy", "BE"),
        ],
    }
)

APPROVED_REVIEW = "Thorough and well sourced.\n\nDECISION: APPROVED"
REJECTED_REVIEW = "Valuation section is missing.\n\nDECISION: REJECTED"

INSIGHTS_JSON = json.dumps(
    {
        "recommendation": "buy",
        "convictionScore": 8,
        "analysisConfidence": "High",
        "targetPrice": "$120.50",
        "impliedAnnualReturn": "12%",
        "priceRanges": {"fairValue": "$100-110"},
        "scenarios": {"bull": {"target": "$160", "assumptions": "Margins recover"}},
        "summary": "A leader in a growing market.",
        "keyMetrics": [{"label": "Gross margin", "value": 45, "sentiment": "Positive"}],
        "opportunities": ["New markets"],
        "risks": ["Competition"],
        "catalysts": ["Product launch"],
    }
)


def ranking_reply(order: list[int]) -> str:
    return json.dumps({"ranking": order})


# =============================================================================
# Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def repository(session_factory) -> AnalysisRepository:
    return AnalysisRepository(session_factory)


@pytest.fixture
def tracker(session_factory) -> JobStatusTracker:
    return JobStatusTracker(session_factory)


@pytest.fixture
def backend() -> RecordingQueueBackend:
    return RecordingQueueBackend()


@pytest.fixture
def queues(tracker, backend) -> QueueSet:
    return QueueSet(tracker, backend)


@pytest.fixture
def ai() -> ScriptedAI:
    return ScriptedAI()


@pytest.fixture
def registry(repository, tracker, backend, ai) -> PipelineRegistry:
    return PipelineRegistry.create(backend, repository=repository, tracker=tracker, ai=ai)


@pytest.fixture
def triggers(repository, queues) -> PipelineTriggers:
    return PipelineTriggers(repository, queues)


async def drain(
    registry: PipelineRegistry,
    backend: RecordingQueueBackend,
    *,
    max_jobs: int = 100,
) -> list[tuple[SentJob, Union[dict[str, Any], StageFailedError]]]:
    """Run queued jobs until the backend is empty.

    Payloads go through their JSON wire form first, as they would via the
    broker. Failed jobs are recorded, not retried.
    """
    outcomes: list[tuple[SentJob, Union[dict[str, Any], StageFailedError]]] = []
    while backend.pending:
        if len(outcomes) >= max_jobs:
            raise AssertionError(f"Pipeline did not settle after {max_jobs} jobs")
        job = backend.pending.popleft()
        payload = parse_payload(job.payload.dump())
        try:
            result: Union[dict[str, Any], StageFailedError] = await registry.run(
                job.job_id, payload
            )
        except StageFailedError as exc:
            result = exc
        outcomes.append((job, result))
    return outcomes
