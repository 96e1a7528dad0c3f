"""Update stream publisher: job changes as a server-sent event stream."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Optional

from sectorscope.core.logging import get_logger
from sectorscope.streaming.events import connected_event
from sectorscope.streaming.feed import ChangeFeed, StopCheck


logger = get_logger("streaming.publisher")

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class UpdateStreamPublisher:
    """Turns a change feed into SSE text for one subscriber.

    Delivery is best effort: nothing is buffered across disconnects, so a
    reconnecting client should re-fetch full state first.
    """

    def __init__(self, feed: ChangeFeed):
        self.feed = feed

    async def stream(
        self, root_id: str, is_disconnected: Optional[StopCheck] = None
    ) -> AsyncIterator[str]:
        yield connected_event().encode()

        subscription = self.feed.subscribe(root_id, should_stop=is_disconnected)
        try:
            async for event in subscription:
                yield event.encode()
        finally:
            await subscription.aclose()
            logger.debug(f"Update stream for {root_id} closed")
