"""Error classification and retry policy for pipeline jobs.

Every failure is mapped to a kind that decides whether (and after how long)
it may be retried:

    Kind               Retryable   Base delay
    RATE_LIMIT         yes         60s (or Retry-After)
    VALIDATION_ERROR   no          -
    API_ERROR          no          -
    NETWORK_ERROR      yes         10s
    JUDGE_REJECTION    yes         5s
    UNKNOWN            yes         5s

Matching is done on HTTP status codes when the failure carries one, then on
the failure text. Order matters: rate-limit and validation signals win over
the generic network checks.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sectorscope.core.exceptions import JobError, ValidationError


DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 5.0
STACK_TRACE_LIMIT = 1000


class ErrorKind(str, Enum):
    RATE_LIMIT = "RATE_LIMIT"
    API_ERROR = "API_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    JUDGE_REJECTION = "JUDGE_REJECTION"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ErrorClassification:
    """Category and retry policy for one failure."""

    kind: ErrorKind
    message: str
    retryable: bool
    retry_delay: float | None = None  # seconds


class JudgeRejectedError(Exception):
    """The judge stage rejected an analysis."""


class ReportParseError(ValidationError):
    """AI output could not be turned into the expected structure."""

    error_code = "INVALID_AI_OUTPUT"
    message = "Invalid AI output"


class JobTimeoutError(JobError):
    """A job exceeded its queue's time limit."""

    error_code = "JOB_TIMEOUT"
    message = "Job timed out"


class StageFailedError(JobError):
    """A stage worker failed; carries the classification of the cause."""

    error_code = "STAGE_FAILED"

    def __init__(self, message: str, classification: ErrorClassification):
        super().__init__(
            message=message,
            details={
                "kind": classification.kind.value,
                "retryable": classification.retryable,
            },
        )
        self.classification = classification


_RATE_LIMIT_SIGNALS = ("rate limit", "rate_limit", "429", "too many requests")
_VALIDATION_SIGNALS = ("400", "bad request", "invalid")
_API_SIGNALS = ("401", "403", "unauthorized", "forbidden")
_NETWORK_SIGNALS = (
    "network",
    "timeout",
    "timed out",
    "econnrefused",
    "connection refused",
    "enotfound",
    "name or service not known",
    "connection error",
)
_JUDGE_SIGNALS = ("judge reject",)


def _status_code(error: Any) -> int | None:
    for source in (error, getattr(error, "response", None)):
        value = getattr(source, "status_code", None)
        if isinstance(value, int):
            return value
    return None


def get_retry_after(error: Any) -> float | None:
    """Extract the Retry-After header (seconds) from an HTTP error, if any."""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) or getattr(error, "headers", None)
    if not headers:
        return None

    value = headers.get("retry-after") or headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def classify_error(error: BaseException | str) -> ErrorClassification:
    """Classify a failure and determine its retry policy."""
    if isinstance(error, StageFailedError):
        return error.classification

    message = str(error) if not isinstance(error, str) else error
    if isinstance(error, BaseException) and not message:
        message = type(error).__name__
    text = message.lower()
    status = _status_code(error) if not isinstance(error, str) else None

    if status == 429 or any(s in text for s in _RATE_LIMIT_SIGNALS):
        return ErrorClassification(
            kind=ErrorKind.RATE_LIMIT,
            message=message,
            retryable=True,
            retry_delay=get_retry_after(error) or 60.0,
        )

    if (
        status in (400, 422)
        or isinstance(error, ValidationError)
        or any(s in text for s in _VALIDATION_SIGNALS)
    ):
        return ErrorClassification(
            kind=ErrorKind.VALIDATION_ERROR, message=message, retryable=False
        )

    if status in (401, 403) or any(s in text for s in _API_SIGNALS):
        return ErrorClassification(
            kind=ErrorKind.API_ERROR, message=message, retryable=False
        )

    if isinstance(error, (TimeoutError, ConnectionError, JobTimeoutError)) or any(
        s in text for s in _NETWORK_SIGNALS
    ):
        return ErrorClassification(
            kind=ErrorKind.NETWORK_ERROR,
            message=message,
            retryable=True,
            retry_delay=10.0,
        )

    if isinstance(error, JudgeRejectedError) or any(s in text for s in _JUDGE_SIGNALS):
        return ErrorClassification(
            kind=ErrorKind.JUDGE_REJECTION,
            message=message,
            retryable=True,
            retry_delay=5.0,
        )

    return ErrorClassification(
        kind=ErrorKind.UNKNOWN,
        message=message,
        retryable=True,
        retry_delay=5.0,
    )


def should_retry(
    classification: ErrorClassification,
    attempt: int,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> bool:
    """Whether another attempt is allowed after ``attempt`` failed."""
    if not classification.retryable:
        return False
    return attempt < max_attempts


def backoff_delay(base_delay: float, attempt: int) -> float:
    """Exponential backoff: ``base_delay * 2 ** (attempt - 1)``."""
    return base_delay * (2 ** (attempt - 1))


def calculate_retry_delay(
    classification: ErrorClassification,
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> float:
    """Delay in seconds before retrying, preferring the kind's own base delay."""
    return backoff_delay(classification.retry_delay or base_delay, attempt)


def format_error_message(error: BaseException | str, context: str | None = None) -> str:
    """Human-readable failure message with a truncated stack trace."""
    base = str(error) or type(error).__name__
    message = f"{context}: {base}" if context else base

    if isinstance(error, BaseException) and error.__traceback__ is not None:
        trace = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
        message += f"\n\nStack trace:\n{trace[:STACK_TRACE_LIMIT]}"

    return message
