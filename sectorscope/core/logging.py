"""Logging setup for the API and the pipeline workers.

Records carry the request id (API) or the job id and stage (workers) from
context variables. Structured fields are passed as
``extra={"extra_fields": {...}}`` and merged into the JSON line.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import settings


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
job_id_var: ContextVar[Optional[str]] = ContextVar("job_id", default=None)
job_type_var: ContextVar[Optional[str]] = ContextVar("job_type", default=None)

# AI reports end up in exception messages; keep single log lines bounded
MAX_MESSAGE_LENGTH = 4000

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "openai", "celery.redirected")


@contextmanager
def job_context(job_id: str, job_type: Optional[str] = None) -> Iterator[None]:
    """Tag every record emitted inside the block with a job id and stage."""
    id_token = job_id_var.set(job_id)
    type_token = job_type_var.set(job_type)
    try:
        yield
    finally:
        job_type_var.reset(type_token)
        job_id_var.reset(id_token)


def _context_fields() -> Dict[str, str]:
    fields = {}
    for key, var in (
        ("request_id", request_id_var),
        ("job_id", job_id_var),
        ("stage", job_type_var),
    ):
        value = var.get()
        if value:
            fields[key] = value
    return fields


def _truncate(message: str) -> str:
    if len(message) <= MAX_MESSAGE_LENGTH:
        return message
    return f"{message[:MAX_MESSAGE_LENGTH]}... [{len(message) - MAX_MESSAGE_LENGTH} chars truncated]"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _truncate(record.getMessage()),
            **_context_fields(),
        }

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            entry.update(extra_fields)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        if settings.debug:
            entry["location"] = f"{record.pathname}:{record.lineno} in {record.funcName}"

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Readable single-line format for local development."""

    def format(self, record: logging.LogRecord) -> str:
        context = _context_fields()
        tags = ""
        if "request_id" in context:
            tags += f"[{context['request_id'][:8]}] "
        if "job_id" in context:
            tags += f"[{context.get('stage', 'job')} {context['job_id']}] "

        timestamp = datetime.fromtimestamp(record.created, timezone.utc)
        line = (
            f"{timestamp:%Y-%m-%d %H:%M:%S} {record.levelname:8} "
            f"{tags}{record.name}: {_truncate(record.getMessage())}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class SensitiveDataFilter(logging.Filter):
    """Redact credentials before a record is written."""

    SENSITIVE_KEYS = ("api_key", "openai_api_key", "authorization", "password", "token", "secret")
    _OPENAI_KEY = re.compile(r"\bsk-[A-Za-z0-9_-]{16,}")

    def __init__(self) -> None:
        super().__init__()
        keys = "|".join(self.SENSITIVE_KEYS)
        self._key_value = re.compile(
            rf"""(["']?(?:{keys})["']?\s*[=:]\s*)(?:Bearer\s+)?[^\s,}}\]]+""",
            re.IGNORECASE,
        )

    def redact(self, text: str) -> str:
        text = self._OPENAI_KEY.sub("[REDACTED]", text)
        return self._key_value.sub(r"\1[REDACTED]", text)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging() -> None:
    """Install a single stdout handler on the root logger."""
    level = getattr(logging, settings.log_level)
    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        StructuredFormatter() if settings.log_format == "json" else TextFormatter()
    )
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``sectorscope`` namespace."""
    return logging.getLogger(f"sectorscope.{name}")
