"""Polling-based update stream for pipeline progress."""

from sectorscope.streaming.events import StreamEvent, StreamEventType
from sectorscope.streaming.feed import ChangeFeed, PollingChangeFeed, diff_job_states
from sectorscope.streaming.publisher import SSE_HEADERS, UpdateStreamPublisher

__all__ = [
    "SSE_HEADERS",
    "ChangeFeed",
    "PollingChangeFeed",
    "StreamEvent",
    "StreamEventType",
    "UpdateStreamPublisher",
    "diff_job_states",
]
