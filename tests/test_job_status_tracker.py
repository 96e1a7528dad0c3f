"""Tests for the JobStatus tracker."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update

from sectorscope.database.orm import JobStatus
from sectorscope.repositories.job_status_orm import clamp_progress


class TestClampProgress:
    @pytest.mark.parametrize(
        "value,expected", [(150, 100), (-10, 0), (0, 0), (55.7, 55), (100, 100)]
    )
    def test_clamps_into_range(self, value, expected):
        assert clamp_progress(value) == expected


class TestJobStatusTracker:
    """Lifecycle of a JobStatus row."""

    @pytest.mark.asyncio
    async def test_create_starts_waiting(self, tracker):
        assert await tracker.create("job-1", "sector_research", "sa-1") is True

        row = await tracker.get("job-1")
        assert row["status"] == "waiting"
        assert row["progress"] == 0
        assert row["related_id"] == "sa-1"
        assert row["error_message"] is None

    @pytest.mark.asyncio
    async def test_duplicate_create_returns_false(self, tracker):
        assert await tracker.create("job-1", "sector_research", "sa-1") is True
        assert await tracker.create("job-1", "sector_research", "sa-1") is False

    @pytest.mark.asyncio
    async def test_progress_is_clamped(self, tracker):
        await tracker.create("job-1", "stock_ranking", "sub-1")
        await tracker.mark_active("job-1")

        await tracker.update_progress("job-1", 150)
        assert (await tracker.get("job-1"))["progress"] == 100

        await tracker.update_progress("job-1", -10)
        row = await tracker.get("job-1")
        assert row["progress"] == 0
        assert row["status"] == "active"

    @pytest.mark.asyncio
    async def test_completed_sets_full_progress(self, tracker):
        await tracker.create("job-1", "judge_review", "a-1")
        await tracker.mark_active("job-1")
        await tracker.mark_completed("job-1")

        row = await tracker.get("job-1")
        assert row["status"] == "completed"
        assert row["progress"] == 100

    @pytest.mark.asyncio
    async def test_failed_keeps_message(self, tracker):
        await tracker.create("job-1", "format_insights", "a-1")
        await tracker.mark_active("job-1")
        await tracker.update_progress("job-1", 70)
        await tracker.mark_failed("job-1", "Format insights failed: bad JSON")

        row = await tracker.get("job-1")
        assert row["status"] == "failed"
        assert row["progress"] == 70
        assert row["error_message"] == "Format insights failed: bad JSON"

    @pytest.mark.asyncio
    async def test_update_unknown_job_is_ignored(self, tracker):
        await tracker.mark_completed("missing")
        assert await tracker.get("missing") is None

    @pytest.mark.asyncio
    async def test_list_by_related_id_newest_first(self, tracker):
        await tracker.create("job-1", "stock_analysis", "stock-1")
        await tracker.create("job-2", "stock_analysis", "stock-1")
        await tracker.create("job-3", "stock_analysis", "stock-2")

        rows = await tracker.list_by_related_id("stock-1")
        assert [r["job_id"] for r in rows] == ["job-2", "job-1"]

    @pytest.mark.asyncio
    async def test_list_by_related_ids(self, tracker):
        await tracker.create("job-1", "sector_research", "sa-1")
        await tracker.create("job-2", "stock_ranking", "sub-1")
        await tracker.create("job-3", "stock_ranking", "sub-9")

        rows = await tracker.list_by_related_ids(["sa-1", "sub-1", "sa-1"])
        assert {r["job_id"] for r in rows} == {"job-1", "job-2"}
        assert await tracker.list_by_related_ids([]) == []

    @pytest.mark.asyncio
    async def test_discard(self, tracker):
        await tracker.create("job-1", "sector_research", "sa-1")
        await tracker.discard("job-1")
        assert await tracker.get("job-1") is None

    @pytest.mark.asyncio
    async def test_purge_only_old_completed(self, tracker, session_factory):
        for job_id in ("old-done", "new-done", "old-failed"):
            await tracker.create(job_id, "stock_analysis", "stock-1")
        await tracker.mark_completed("old-done")
        await tracker.mark_completed("new-done")
        await tracker.mark_failed("old-failed", "boom")

        old = datetime.now(UTC) - timedelta(days=30)
        async with session_factory() as session:
            await session.execute(
                update(JobStatus)
                .where(JobStatus.job_id.in_(["old-done", "old-failed"]))
                .values(updated_at=old)
            )
            await session.commit()

        assert await tracker.purge_older_than(7) == 1
        assert await tracker.get("old-done") is None
        assert await tracker.get("new-done") is not None
        assert await tracker.get("old-failed") is not None
