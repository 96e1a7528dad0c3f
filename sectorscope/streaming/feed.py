"""Change feeds: where update stream events come from.

The polling feed re-reads JobStatus rows for a sector analysis and all of
its descendants on a fixed interval. Descendant ids are resolved on every
poll because the hierarchy keeps growing while the pipeline runs.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any, Optional, Protocol

from sectorscope.core.config import settings
from sectorscope.core.logging import get_logger
from sectorscope.streaming.events import (
    StreamEvent,
    complete_event,
    error_event,
    poll_error_event,
    progress_event,
)

if TYPE_CHECKING:
    from sectorscope.repositories.analysis_orm import AnalysisRepository
    from sectorscope.repositories.job_status_orm import JobStatusTracker


logger = get_logger("streaming.feed")

StopCheck = Callable[[], Awaitable[bool]]


class ChangeFeed(Protocol):
    """Source of job change events for one root entity."""

    def subscribe(
        self, root_id: str, should_stop: Optional[StopCheck] = None
    ) -> AsyncGenerator[StreamEvent, None]: ...


def diff_job_states(
    rows: Iterable[Mapping[str, Any]],
    last_sent: dict[str, tuple[str, int]],
) -> list[StreamEvent]:
    """Events for rows whose (status, progress) changed since last sent.

    Every change produces a ``progress`` event, followed by ``complete`` or
    ``error`` when the new status is terminal. ``last_sent`` is updated in
    place.
    """
    events: list[StreamEvent] = []
    for row in rows:
        state = (row["status"], row["progress"])
        if last_sent.get(row["job_id"]) == state:
            continue
        last_sent[row["job_id"]] = state

        events.append(progress_event(row))
        if row["status"] == "completed":
            events.append(complete_event(row))
        elif row["status"] == "failed":
            events.append(error_event(row))
    return events


class PollingChangeFeed:
    """Change feed backed by periodic reads of the job status table."""

    def __init__(
        self,
        tracker: JobStatusTracker,
        repository: AnalysisRepository,
        *,
        interval: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.tracker = tracker
        self.repository = repository
        self.interval = interval if interval is not None else settings.stream_poll_interval
        self._sleep = sleep

    async def poll_once(
        self, root_id: str, last_sent: dict[str, tuple[str, int]]
    ) -> list[StreamEvent]:
        related_ids = await self.repository.list_related_ids(root_id)
        rows = await self.tracker.list_by_related_ids(related_ids)
        return diff_job_states(rows, last_sent)

    async def subscribe(
        self, root_id: str, should_stop: Optional[StopCheck] = None
    ) -> AsyncGenerator[StreamEvent, None]:
        last_sent: dict[str, tuple[str, int]] = {}
        while True:
            if should_stop is not None and await should_stop():
                logger.debug(f"Subscriber for {root_id} went away, stopping poll")
                return

            try:
                events = await self.poll_once(root_id, last_sent)
            except Exception:
                logger.exception(f"Error polling job status for {root_id}")
                events = [poll_error_event()]

            for event in events:
                yield event

            await self._sleep(self.interval)
