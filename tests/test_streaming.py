"""Tests for the polling change feed and the SSE publisher."""

from __future__ import annotations

import json

import pytest

from sectorscope.streaming import PollingChangeFeed, UpdateStreamPublisher, diff_job_states
from sectorscope.streaming.events import StreamEventType, connected_event


def _parse_sse(chunks):
    events = []
    for chunk in chunks:
        assert chunk.endswith("\n\n")
        event_line, data_line = chunk.strip("\n").split("\n")
        events.append((event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: "))))
    return events


class TestDiffJobStates:
    def _row(self, status, progress, error=None):
        return {
            "job_id": "j1",
            "job_type": "stock_ranking",
            "related_id": "sub-1",
            "status": status,
            "progress": progress,
            "error_message": error,
        }

    def test_only_changes_are_emitted(self):
        last_sent = {}
        assert len(diff_job_states([self._row("active", 20)], last_sent)) == 1
        assert diff_job_states([self._row("active", 20)], last_sent) == []

    def test_failed_emits_progress_and_error(self):
        events = diff_job_states([self._row("failed", 60, "Stock ranking failed: boom")], {})
        assert [e.event for e in events] == [StreamEventType.PROGRESS, StreamEventType.ERROR]
        assert events[0].data["errorMessage"] == "Stock ranking failed: boom"
        assert events[1].data == {
            "type": "stock_ranking",
            "jobId": "j1",
            "relatedId": "sub-1",
            "status": "failed",
            "errorMessage": "Stock ranking failed: boom",
        }

    def test_no_error_message_key_when_unset(self):
        event = diff_job_states([self._row("active", 10)], {})[0]
        assert "errorMessage" not in event.data


class TestEncoding:
    def test_wire_format(self):
        assert connected_event().encode() == (
            'event: connected\ndata: {"message":"Connected to job stream"}\n\n'
        )


class TestPollingChangeFeed:
    """A subscriber sees each distinct job state once."""

    @pytest.mark.asyncio
    async def test_job_lifecycle_scenario(self, repository, tracker):
        analysis = await repository.create_sector_analysis("user-1", "Clean Energy")
        await tracker.create("research-1", "sector_research", analysis["id"])
        await tracker.create("other-1", "sector_research", "unrelated")

        transitions = [
            lambda: tracker.mark_active("research-1", 0),
            lambda: tracker.update_progress("research-1", 0),  # no visible change
            lambda: tracker.update_progress("research-1", 50),
            lambda: tracker.mark_completed("research-1"),
        ]

        async def sleep(_interval):
            if transitions:
                await transitions.pop(0)()

        polls_left = len(transitions) + 1

        async def should_stop():
            nonlocal polls_left
            polls_left -= 1
            return polls_left < 0

        feed = PollingChangeFeed(tracker, repository, interval=0, sleep=sleep)
        publisher = UpdateStreamPublisher(feed)

        chunks = [
            chunk async for chunk in publisher.stream(analysis["id"], is_disconnected=should_stop)
        ]
        events = _parse_sse(chunks)

        assert events[0] == ("connected", {"message": "Connected to job stream"})
        progress = [(d["status"], d["progress"]) for name, d in events if name == "progress"]
        assert progress == [("waiting", 0), ("active", 0), ("active", 50), ("completed", 100)]
        complete = [d for name, d in events if name == "complete"]
        assert len(complete) == 1
        assert complete[0]["jobId"] == "research-1"
        assert all(d.get("jobId") != "other-1" for _, d in events)

    @pytest.mark.asyncio
    async def test_descendant_jobs_are_included(self, repository, tracker):
        analysis = await repository.create_sector_analysis("user-1", "Clean Energy")
        await repository.complete_sector_research(
            analysis["id"],
            "report",
            [{"name": "Wind", "summary": "", "stocks": [{"company_name": "Vestas"}]}],
        )
        sub = (await repository.get_sector_analysis_tree(analysis["id"]))["sub_sectors"][0]
        stock = sub["stocks"][0]
        stock_analysis, _ = await repository.ensure_stock_analysis(stock["id"])

        await tracker.create("rank-1", "stock_ranking", sub["id"])
        await tracker.create("stock-1", "stock_analysis", stock["id"])
        await tracker.create("judge-1", "judge_review", stock_analysis["id"])

        feed = PollingChangeFeed(tracker, repository, interval=0)
        events = await feed.poll_once(analysis["id"], {})
        assert {e.data["jobId"] for e in events} == {"rank-1", "stock-1", "judge-1"}

    @pytest.mark.asyncio
    async def test_poll_error_is_reported_and_polling_continues(self, repository, tracker, monkeypatch):
        calls = 0

        async def flaky(ids):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("database went away")
            return []

        monkeypatch.setattr(tracker, "list_by_related_ids", flaky)

        async def no_sleep(_interval):
            return None

        async def stop_after_two():
            return calls >= 2

        feed = PollingChangeFeed(tracker, repository, interval=0, sleep=no_sleep)
        events = [e async for e in feed.subscribe("sa-1", should_stop=stop_after_two)]

        assert [e.data for e in events] == [{"message": "Error fetching job updates"}]
        assert calls == 2

    @pytest.mark.asyncio
    async def test_closing_the_stream_stops_polling(self, repository, tracker):
        async def no_sleep(_interval):
            return None

        feed = PollingChangeFeed(tracker, repository, interval=0, sleep=no_sleep)
        stream = UpdateStreamPublisher(feed).stream("sa-1")

        assert (await stream.__anext__()).startswith("event: connected")
        await stream.aclose()
