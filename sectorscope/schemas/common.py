"""Schemas shared by all routes: the error body and health reports."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    error: str = Field(..., description="Stable error code", examples=["CONFLICT"])
    message: str = Field(..., description="Human-readable explanation")
    status: int = Field(..., description="HTTP status code, repeated in the body")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Context such as the entity's current status"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "CONFLICT",
                "message": "Sub-sector is already analyzing",
                "status": 409,
                "details": {"status": "analyzing"},
            }
        }
    }


class HealthChecks(BaseModel):
    database: bool = Field(..., description="PostgreSQL answers queries")
    broker: bool = Field(..., description="Valkey broker answers PING")


class HealthResponse(BaseModel):
    """Overall health; ``degraded`` means reads work but jobs cannot be queued."""

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    timestamp: datetime
    checks: HealthChecks
