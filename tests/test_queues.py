"""Tests for the queue table, payload contracts and the enqueue path."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from sectorscope.jobs.payloads import (
    FormatInsightsJob,
    JobType,
    JudgeReviewJob,
    SectorResearchJob,
    StockAnalysisJob,
    StockRankingJob,
    format_insights_job_id,
    judge_review_job_id,
    parse_payload,
    stock_analysis_job_id,
)
from sectorscope.jobs.queues import QUEUE_CONFIGS, get_queue_config


class TestQueueConfigs:
    """The five stage queues and their limits."""

    def test_one_queue_per_job_type(self):
        assert set(QUEUE_CONFIGS) == set(JobType)

    @pytest.mark.parametrize(
        "job_type,name,concurrency,per_minute,timeout,attempts",
        [
            (JobType.SECTOR_RESEARCH, "sector-research", 2, 5, 900, 2),
            (JobType.STOCK_RANKING, "stock-ranking", 3, 5, 300, 3),
            (JobType.STOCK_ANALYSIS, "stock-analysis", 5, 10, 900, 1),
            (JobType.JUDGE_REVIEW, "judge-review", 10, 20, 300, 3),
            (JobType.FORMAT_INSIGHTS, "format-insights", 10, 20, 180, 3),
        ],
    )
    def test_limits(self, job_type, name, concurrency, per_minute, timeout, attempts):
        config = get_queue_config(job_type)
        assert config.name == name
        assert config.concurrency == concurrency
        assert config.rate_limit == f"{per_minute}/m"
        assert config.timeout_seconds == timeout
        assert config.attempts == attempts
        assert config.max_retries == attempts - 1

    def test_lookup_by_value(self):
        assert get_queue_config("judge_review").name == "judge-review"


class TestPayloads:
    def test_wire_form_round_trip_keeps_variant(self):
        job = StockAnalysisJob(
            stock_id="s1",
            stock_analysis_id="a1",
            company_name="Enphase Energy",
            ticker="ENPH",
            sub_sector_name="Residential Solar",
            attempt_number=2,
        )
        parsed = parse_payload(job.dump())
        assert isinstance(parsed, StockAnalysisJob)
        assert parsed == job

    def test_unknown_fields_rejected(self):
        with pytest.raises(PydanticValidationError):
            parse_payload(
                {
                    "job_type": "sector_research",
                    "sector_analysis_id": "sa1",
                    "user_id": "u1",
                    "sector_name": "Energy",
                    "surprise": True,
                }
            )

    def test_attempt_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            JudgeReviewJob(
                stock_analysis_id="a1",
                stock_id="s1",
                raw_analysis="text",
                company_name="X",
                attempt_number=0,
            )

    def test_related_ids(self):
        assert SectorResearchJob(sector_analysis_id="sa", user_id="u", sector_name="n").related_id == "sa"
        assert StockRankingJob(sub_sector_id="sub", stocks=[]).related_id == "sub"
        assert FormatInsightsJob(
            stock_analysis_id="a", raw_analysis="r", judge_review="j", company_name="c"
        ).related_id == "a"

    def test_deterministic_job_ids(self):
        assert stock_analysis_job_id("a1", 2) == "stock-a1-attempt-2"
        assert judge_review_job_id("a1", 3) == "judge-a1-3"
        assert format_insights_job_id("a1") == "format-a1"


class TestQueueSet:
    """Tests for QueueSet.add."""

    @pytest.mark.asyncio
    async def test_add_creates_status_and_publishes(self, queues, backend, tracker):
        payload = SectorResearchJob(sector_analysis_id="sa1", user_id="u1", sector_name="Energy")

        job_id = await queues.add(payload, priority=2)

        assert job_id.startswith("sector_research-")
        assert len(backend.sent) == 1
        sent = backend.sent[0]
        assert sent.config.name == "sector-research"
        assert sent.options.priority == 2

        row = await tracker.get(job_id)
        assert row["status"] == "waiting"
        assert row["job_type"] == "sector_research"
        assert row["related_id"] == "sa1"

    @pytest.mark.asyncio
    async def test_generated_ids_are_unique(self, queues, backend):
        payload = SectorResearchJob(sector_analysis_id="sa1", user_id="u1", sector_name="Energy")
        first = await queues.add(payload)
        second = await queues.add(payload)
        assert first != second
        assert len(backend.sent) == 2

    @pytest.mark.asyncio
    async def test_same_job_id_is_deduplicated(self, queues, backend):
        payload = FormatInsightsJob(
            stock_analysis_id="a1", raw_analysis="r", judge_review="j", company_name="c"
        )
        job_id = format_insights_job_id("a1")

        assert await queues.add(payload, job_id=job_id) == job_id
        assert await queues.add(payload, job_id=job_id) == job_id
        assert len(backend.sent) == 1

    @pytest.mark.asyncio
    async def test_delay_is_passed_through(self, queues, backend):
        payload = StockAnalysisJob(
            stock_id="s1",
            stock_analysis_id="a1",
            company_name="X",
            sub_sector_name="Y",
            attempt_number=2,
        )
        await queues.add(payload, job_id=stock_analysis_job_id("a1", 2), delay=5.0)
        assert backend.sent[0].options.delay == 5.0

    @pytest.mark.asyncio
    async def test_backend_failure_discards_status(self, queues, backend, tracker):
        backend.fail_with = ConnectionError("broker down")
        payload = FormatInsightsJob(
            stock_analysis_id="a1", raw_analysis="r", judge_review="j", company_name="c"
        )

        with pytest.raises(ConnectionError):
            await queues.add(payload, job_id="format-a1")

        assert await tracker.get("format-a1") is None

        # The same id can be enqueued once the broker is back
        backend.fail_with = None
        await queues.add(payload, job_id="format-a1")
        assert len(backend.sent) == 1
