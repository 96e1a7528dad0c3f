"""
Async AI client for the research pipeline.

Wraps the OpenAI Responses API with:
- Streaming output with an optional per-chunk callback
- Token usage reporting
- Bounded transport-level retry for transient failures (tenacity)
- Lazily created, pooled HTTP client
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import httpx
from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from sectorscope.core.config import settings
from sectorscope.core.exceptions import ExternalServiceError
from sectorscope.core.logging import get_logger
from sectorscope.jobs.errors import ErrorKind, classify_error


logger = get_logger("ai.client")

DEFAULT_MAX_OUTPUT_TOKENS = 16_000

ProgressCallback = Callable[[str], Union[None, Awaitable[None]]]


@dataclass
class TokenUsage:
    input: int = 0
    output: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"input": self.input, "output": self.output, "total": self.total}


@dataclass
class AIResult:
    content: str
    token_usage: TokenUsage = field(default_factory=TokenUsage)


def is_transient(exc: BaseException) -> bool:
    """Whether an AI call failure is worth repeating at the transport level."""
    classification = classify_error(exc)
    return classification.retryable and classification.kind != ErrorKind.JUDGE_REJECTION


class AIClient:
    """
    Streaming text generation with transport-level retry.

    Usage:
        client = AIClient()
        result = await client.invoke(prompt, web_search_enabled=True)
        print(result.content, result.token_usage.total)
        await client.close()
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
        wait: Optional[wait_base] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.ai_model
        self.max_attempts = max_attempts or settings.ai_max_attempts
        self.retry_delay = retry_delay or settings.ai_retry_delay
        self._wait = wait or wait_exponential_jitter(
            initial=self.retry_delay, max=60, jitter=0.5
        )
        self._client = client
        self._owns_client = client is None
        self._http_client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def _get_client(self) -> AsyncOpenAI:
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is not None:
                return self._client
            if not self.api_key:
                raise ExternalServiceError(
                    "AI API key not configured",
                    error_code="AI_NOT_CONFIGURED",
                    status_code=401,
                )

            self._http_client = httpx.AsyncClient(
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                timeout=httpx.Timeout(settings.ai_request_timeout, connect=10.0),
            )
            self._client = AsyncOpenAI(api_key=self.api_key, http_client=self._http_client)
            logger.debug("Created AI client")
            return self._client

    async def invoke(
        self,
        prompt: str,
        *,
        web_search_enabled: bool = False,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AIResult:
        """Run one prompt to completion.

        Transient failures (rate limits, network errors, unknown errors) are
        retried up to ``max_attempts`` times with exponential backoff. The
        last failure is re-raised once attempts run out; non-transient
        failures are raised immediately.
        """
        start = time.monotonic()

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                result = await self._stream(
                    prompt,
                    web_search_enabled=web_search_enabled,
                    max_output_tokens=max_output_tokens,
                    on_progress=on_progress,
                )

        usage = result.token_usage
        logger.info(
            f"AI call finished - {usage.input} in / {usage.output} out tokens, "
            f"{int((time.monotonic() - start) * 1000)}ms",
            extra={
                "extra_fields": {
                    "model": self.model,
                    "web_search": web_search_enabled,
                    "attempts": attempt.retry_state.attempt_number,
                }
            },
        )
        return result

    async def _stream(
        self,
        prompt: str,
        *,
        web_search_enabled: bool,
        max_output_tokens: int,
        on_progress: Optional[ProgressCallback],
    ) -> AIResult:
        client = await self._get_client()

        params: dict[str, Any] = {
            "model": self.model,
            "input": prompt,
            "max_output_tokens": max_output_tokens,
            "store": False,
            "stream": True,
        }
        if web_search_enabled:
            params["tools"] = [{"type": settings.ai_web_search_tool}]

        chunks: list[str] = []
        usage = TokenUsage()

        stream = await client.responses.create(**params)
        async for event in stream:
            event_type = getattr(event, "type", "")

            if event_type == "response.output_text.delta":
                chunks.append(event.delta)
                if on_progress is not None:
                    maybe = on_progress(event.delta)
                    if inspect.isawaitable(maybe):
                        await maybe

            elif event_type in ("response.completed", "response.incomplete"):
                response = event.response
                if response.usage is not None:
                    usage = TokenUsage(
                        input=response.usage.input_tokens or 0,
                        output=response.usage.output_tokens or 0,
                        total=response.usage.total_tokens or 0,
                    )
                if event_type == "response.incomplete":
                    details = getattr(response, "incomplete_details", None)
                    logger.warning(
                        f"AI response incomplete: {getattr(details, 'reason', 'unknown')}"
                    )

            elif event_type == "response.failed":
                error = getattr(event.response, "error", None)
                raise ExternalServiceError(
                    f"AI response failed: {getattr(error, 'message', 'unknown error')}"
                )

            elif event_type == "error":
                raise ExternalServiceError(f"AI stream error: {getattr(event, 'message', '')}")

        content = "".join(chunks)
        if not content.strip():
            raise ExternalServiceError("Empty output from AI")

        return AIResult(content=content, token_usage=usage)

    async def close(self) -> None:
        """Release the HTTP connection pool."""
        async with self._lock:
            if self._http_client is not None:
                try:
                    await self._http_client.aclose()
                except Exception as e:
                    logger.debug(f"Error closing HTTP client: {e}")
                self._http_client = None
            if self._owns_client:
                self._client = None
