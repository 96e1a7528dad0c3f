"""API application factory."""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from sectorscope.core.config import settings
from sectorscope.core.exceptions import register_exception_handlers
from sectorscope.core.logging import get_logger, request_id_var, setup_logging
from sectorscope.database.connection import close_sqlalchemy_engine, init_sqlalchemy_engine
from sectorscope.schemas.common import ErrorResponse

from .deps import ApiServices, build_services
from .routes import analysis, health


logger = get_logger("api")

# Probes hit these every few seconds
_UNLOGGED_PATHS = frozenset({"/health/live", "/health/ready"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    # The API still serves health checks when the database is down
    try:
        await init_sqlalchemy_engine()
    except Exception as e:
        logger.warning(f"Database engine unavailable at startup: {e}")

    yield

    try:
        await close_sqlalchemy_engine()
    except Exception as e:
        logger.warning(f"Database engine shutdown failed: {e}")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, echo it back and log one line per request.

    For event streams the logged duration covers the time until the
    response started, not the lifetime of the stream.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        start = time.monotonic()
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            path = request.url.path
            if path not in _UNLOGGED_PATHS:
                duration_ms = int((time.monotonic() - start) * 1000)
                logger.info(
                    f"{request.method} {path} -> {response.status_code} ({duration_ms}ms)",
                    extra={
                        "extra_fields": {
                            "method": request.method,
                            "path": path,
                            "status_code": response.status_code,
                            "duration_ms": duration_ms,
                        }
                    },
                )
            return response
        finally:
            request_id_var.reset(token)


def create_api_app(services: Optional[ApiServices] = None) -> FastAPI:
    """Create and configure the API application.

    ``services`` replaces the default repositories and Celery backend,
    which tests use to run the API against a local database.
    """
    setup_logging()

    docs_enabled = settings.debug
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Start sector research, approve sub-sectors and follow job progress.",
        docs_url="/docs" if docs_enabled else None,
        redoc_url=None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
        responses={
            code: {"model": ErrorResponse, "description": description}
            for code, description in (
                (400, "Bad Request"),
                (404, "Not Found"),
                (409, "Conflict"),
                (422, "Validation Error"),
                (500, "Internal Server Error"),
            )
        },
    )
    app.state.services = services or build_services()

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Request-ID", "Last-Event-ID"],
        expose_headers=["X-Request-ID"],
        max_age=600,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(analysis.router)

    return app
