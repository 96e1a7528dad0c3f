"""Tests for settings validation, log formatting and log-safe task arguments."""

from __future__ import annotations

import json
import logging

import pydantic
import pytest

from sectorscope.core.config import Settings
from sectorscope.core.logging import (
    MAX_MESSAGE_LENGTH,
    SensitiveDataFilter,
    StructuredFormatter,
    job_context,
    job_id_var,
)
from sectorscope.database.connection import get_async_database_url
from sectorscope.jobs.base_task import summarize_job_args


def _record(message: str, *args, **extra) -> logging.LogRecord:
    record = logging.LogRecord("sectorscope.test", logging.INFO, __file__, 1, message, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSettings:
    def test_cors_origins_from_comma_list(self):
        settings = Settings(_env_file=None, cors_origins="https://a.example, https://b.example,")
        assert settings.cors_origins == ["https://a.example", "https://b.example"]

    def test_log_level_normalized(self):
        assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_unknown_log_format_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, log_format="xml")

    def test_pool_bounds_checked(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, db_pool_min_size=10, db_pool_max_size=5)

    def test_cleanup_cron_needs_five_fields(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None, job_status_cleanup_cron="0 3 * *")

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("postgresql://u:p@db:5432/x", "postgresql+asyncpg://u:p@db:5432/x"),
            ("postgres://u:p@db/x", "postgresql+asyncpg://u:p@db/x"),
            ("postgresql+asyncpg://u:p@db/x", "postgresql+asyncpg://u:p@db/x"),
            ("sqlite+aiosqlite:///tmp/x.db", "sqlite+aiosqlite:///tmp/x.db"),
        ],
    )
    def test_async_database_url(self, url, expected):
        assert get_async_database_url(url) == expected


class TestStructuredFormatter:
    def test_job_context_fields(self):
        with job_context("judge-abc-2", "judge_review"):
            line = json.loads(StructuredFormatter().format(_record("Reviewing")))

        assert line["job_id"] == "judge-abc-2"
        assert line["stage"] == "judge_review"
        assert job_id_var.get() is None

    def test_extra_fields_merged(self):
        record = _record("Enqueued", extra_fields={"queue": "stock-analysis", "priority": 2})
        line = json.loads(StructuredFormatter().format(record))

        assert line["queue"] == "stock-analysis"
        assert line["priority"] == 2
        assert "job_id" not in line

    def test_long_messages_truncated(self):
        line = json.loads(StructuredFormatter().format(_record("x" * (MAX_MESSAGE_LENGTH + 50))))
        assert line["message"].endswith("[50 chars truncated]")


class TestSensitiveDataFilter:
    def test_openai_key_redacted(self):
        record = _record("Client failed with key %s", "sk-proj-abcdefghijklmnop1234")
        SensitiveDataFilter().filter(record)

        assert "sk-proj" not in record.getMessage()
        assert "[REDACTED]" in record.getMessage()

    def test_key_value_redacted(self):
        record = _record("retrying with api_key=abc123 and Authorization: Bearer xyz")
        SensitiveDataFilter().filter(record)

        message = record.getMessage()
        assert "abc123" not in message
        assert "xyz" not in message

    def test_plain_message_untouched(self):
        record = _record("Judge approved %s", "SunPower")
        SensitiveDataFilter().filter(record)
        assert record.getMessage() == "Judge approved SunPower"


class TestTaskArgumentSummary:
    def test_reports_replaced_by_size(self):
        summary = summarize_job_args(
            (
                "judge-a1-1",
                {
                    "job_type": "judge_review",
                    "stock_analysis_id": "a1",
                    "raw_analysis": "r" * 5000,
                    "attempt_number": 1,
                },
            )
        )

        assert summary == {
            "job_id": "judge-a1-1",
            "job_type": "judge_review",
            "stock_analysis_id": "a1",
            "raw_analysis_size": 5000,
            "attempt_number": 1,
        }

    def test_unexpected_args_kept_short(self):
        summary = summarize_job_args(("x" * 2000,))
        assert len(summary["args"]) == 500
