"""Server-sent event types and wire encoding."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, Field


class StreamEventType(str, Enum):
    """Event names on the update stream."""

    CONNECTED = "connected"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


class StreamEvent(BaseModel):
    """One server-sent event."""

    event: StreamEventType
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def encode(self) -> str:
        """Text event stream framing: event line, data line, blank line."""
        payload = json.dumps(self.data, separators=(",", ":"), default=str)
        return f"event: {self.event.value}\ndata: {payload}\n\n"


def _job_fields(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "type": row["job_type"],
        "jobId": row["job_id"],
        "relatedId": row["related_id"],
        "status": row["status"],
    }


def progress_event(row: Mapping[str, Any]) -> StreamEvent:
    data = {**_job_fields(row), "progress": row["progress"]}
    if row.get("error_message"):
        data["errorMessage"] = row["error_message"]
    return StreamEvent(event=StreamEventType.PROGRESS, data=data)


def complete_event(row: Mapping[str, Any]) -> StreamEvent:
    return StreamEvent(event=StreamEventType.COMPLETE, data=_job_fields(row))


def error_event(row: Mapping[str, Any]) -> StreamEvent:
    data = _job_fields(row)
    if row.get("error_message"):
        data["errorMessage"] = row["error_message"]
    return StreamEvent(event=StreamEventType.ERROR, data=data)


def connected_event() -> StreamEvent:
    return StreamEvent(
        event=StreamEventType.CONNECTED, data={"message": "Connected to job stream"}
    )


def poll_error_event() -> StreamEvent:
    return StreamEvent(
        event=StreamEventType.ERROR, data={"message": "Error fetching job updates"}
    )
