"""Application errors and their HTTP rendering.

Every error leaves the API as ``{error, message, status, details?}``.
Pipeline code raises the same classes; the job error classifier reads them
as validation (never retried) or generic failures.
"""

from __future__ import annotations

from typing import Any, Mapping

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import settings
from .logging import get_logger


logger = get_logger("errors")


class AppException(Exception):
    """Base error with a stable code and an HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        status_code: int | None = None,
        details: Mapping[str, Any] | None = None,
    ):
        if message:
            self.message = message
        if error_code:
            self.error_code = error_code
        if status_code:
            self.status_code = status_code
        self.details = dict(details or {})
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return error_body(self.error_code, self.message, self.status_code, self.details)


class NotFoundError(AppException):
    """Unknown sector analysis, sub-sector, stock or job."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    message = "Resource not found"


class BadRequestError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "BAD_REQUEST"
    message = "Bad request"


class ValidationError(AppException):
    """Input that can never succeed as given, including malformed AI output."""

    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    error_code = "VALIDATION_ERROR"
    message = "Validation failed"


class ConflictError(AppException):
    """The entity is not in a state that allows the operation."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "CONFLICT"
    message = "Resource conflict"


class ExternalServiceError(AppException):
    """The AI provider (or another upstream) failed or refused the call."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "EXTERNAL_SERVICE_ERROR"
    message = "External service temporarily unavailable"


class JobError(AppException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "JOB_ERROR"
    message = "Job execution failed"


def error_body(
    error_code: str,
    message: str,
    status_code: int,
    details: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"error": error_code, "message": message, "status": status_code}
    if details:
        body["details"] = dict(details)
    return body


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def register_exception_handlers(app: FastAPI) -> None:
    """Render application, request validation and unexpected errors."""

    @app.exception_handler(AppException)
    async def handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                f"{exc.error_code}: {exc.message}",
                extra={"extra_fields": {"path": request.url.path}},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers={"X-Request-ID": _request_id(request)},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            content=error_body(
                ValidationError.error_code,
                "Request validation failed",
                status.HTTP_422_UNPROCESSABLE_CONTENT,
                {"errors": fields},
            ),
            headers={"X-Request-ID": _request_id(request)},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled exception",
            extra={
                "extra_fields": {
                    "path": request.url.path,
                    "method": request.method,
                }
            },
        )
        message = str(exc) if settings.debug else AppException.message
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(
                AppException.error_code, message, status.HTTP_500_INTERNAL_SERVER_ERROR
            ),
            headers={"X-Request-ID": _request_id(request)},
        )
