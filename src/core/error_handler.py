"""Centralized error handling and logging for the AI Master Architect API.

This module provides:
- Global exception handler for FastAPI
- Mapping of typed generation failures to HTTP status codes
- Structured logging with correlation IDs and redaction of sensitive keys
- Environment-aware error responses (generic in production, detailed in dev)
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from core.config import get_settings
from core.exceptions import DomainError, UpgradeRequiredError
from core.security_config import get_allowed_error_fields, is_sensitive_key
from schemas.api import ErrorResponse
from services.consulting.exceptions import FallbackErrorKind, FallbackInvocationError


_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

logger = logging.getLogger(__name__)

FALLBACK_ERROR_STATUS: dict[FallbackErrorKind, int] = {
    FallbackErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    FallbackErrorKind.CREDENTIAL_INVALID: status.HTTP_400_BAD_REQUEST,
    FallbackErrorKind.MODEL_TIER_FORBIDDEN: status.HTTP_403_FORBIDDEN,
    FallbackErrorKind.UNKNOWN_UPSTREAM_FAILURE: status.HTTP_502_BAD_GATEWAY,
}


def get_correlation_id() -> str:
    """Get or create a correlation ID for request tracing."""
    correlation_id: str | None = _correlation_id_var.get()
    if not correlation_id:
        correlation_id = str(uuid.uuid4())
        _correlation_id_var.set(correlation_id)
    return correlation_id


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id_var.set(correlation_id)


class StructuredLogger:
    """Logger that attaches the correlation ID and redacts sensitive fields."""

    def __init__(self, logger_name: str):
        self.logger = logging.getLogger(logger_name)

    def _log_with_context(
        self,
        level: int,
        message: str,
        extra_data: dict[str, Any] | None = None,
        exc_info: bool = False,
    ) -> None:
        correlation_id = get_correlation_id()
        log_data = {
            "correlation_id": correlation_id,
            **self._sanitize_data(extra_data or {}),
        }
        # The JSON formatter in production merges `extra` into the record;
        # development logs get the ID inline for readability.
        if get_settings().ENVIRONMENT != "production":
            message = f"[{correlation_id}] {message}"
        self.logger.log(level, message, extra=log_data, exc_info=exc_info)

    def _sanitize_data(self, data: dict[str, Any]) -> dict[str, Any]:
        """Remove or mask sensitive data from log entries."""
        if not isinstance(data, dict):
            return {}
        return {
            key: "[REDACTED]" if is_sensitive_key(key) else self._sanitize_value(value)
            for key, value in data.items()
        }

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self._sanitize_data(value)
        if isinstance(value, list):
            return [self._sanitize_value(item) for item in value]
        return value

    def info(self, message: str, **kwargs: Any) -> None:
        self._log_with_context(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log_with_context(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log_with_context(logging.ERROR, message, kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log at error level with the active traceback."""
        self._log_with_context(logging.ERROR, message, kwargs, exc_info=True)


structured_logger = StructuredLogger(__name__)


class ExceptionNormalizationMiddleware(BaseHTTPMiddleware):
    """Catch any uncaught Exception and delegate to global_exception_handler."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:  # noqa: BLE001
            return await global_exception_handler(request, exc)


def _build_error_response(
    *,
    correlation_id: str,
    error_type: str,
    message: str,
    environment: str,
    status_code: int = 500,
    extra: dict[str, Any] | None = None,
    details: dict[str, Any] | None = None,
    traceback_str: str | None = None,
    exception_type: str | None = None,
    validation_errors: Any | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Construct a sanitized JSON error response respecting environment rules."""
    allowed_fields = get_allowed_error_fields(environment)

    candidates: dict[str, Any] = {
        **(extra or {}),
        "details": details,
        "traceback": traceback_str,
        "exception_type": exception_type,
        "validation_errors": validation_errors,
    }
    error_body: dict[str, Any] = {"correlation_id": correlation_id, "type": error_type}
    for field_name, value in candidates.items():
        if field_name in allowed_fields and value is not None:
            error_body[field_name] = value

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, error=error_body).model_dump(),
        headers=headers,
    )


def fallback_error_status(error: FallbackInvocationError) -> int:
    return FALLBACK_ERROR_STATUS.get(error.kind, status.HTTP_502_BAD_GATEWAY)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Translate any exception into the standard error envelope."""
    environment = get_settings().ENVIRONMENT
    correlation_id = get_correlation_id()

    if isinstance(exc, StarletteHTTPException):
        detail = getattr(exc, "detail", "An error occurred")
        return _build_error_response(
            correlation_id=correlation_id,
            error_type="http_error",
            message=detail if isinstance(detail, str) else "An HTTP error occurred",
            environment=environment,
            status_code=exc.status_code,
            details={"detail": detail},
            exception_type=exc.__class__.__name__,
            headers=getattr(exc, "headers", None),
        )

    if isinstance(exc, ValidationError | RequestValidationError):
        errors = exc.errors()
        structured_logger.warning(
            "Validation error", error_count=len(errors), path=request.url.path
        )
        return _build_error_response(
            correlation_id=correlation_id,
            error_type="validation_error",
            message="Invalid request data provided",
            environment=environment,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            # Input echoes may contain prompts or file data
            validation_errors=[
                {k: v for k, v in err.items() if k not in {"input", "ctx"}}
                for err in errors
            ],
        )

    if isinstance(exc, FallbackInvocationError):
        status_code = fallback_error_status(exc)
        structured_logger.warning(
            "Generation failed",
            kind=exc.kind.value,
            status_code=status_code,
            path=request.url.path,
        )
        return _build_error_response(
            correlation_id=correlation_id,
            error_type="generation_error",
            message=exc.message,
            environment=environment,
            status_code=status_code,
            extra={"kind": exc.kind.value, "remediation": exc.remediation},
        )

    if isinstance(exc, UpgradeRequiredError):
        structured_logger.info("Upgrade required", path=request.url.path)
        return _build_error_response(
            correlation_id=correlation_id,
            error_type="upgrade_required",
            message=str(exc) or "This feature requires a higher membership grade",
            environment=environment,
            status_code=status.HTTP_403_FORBIDDEN,
            extra={"remediation": "upgrade_plan"},
        )

    if isinstance(exc, DomainError):
        structured_logger.warning("Domain error", error_type=exc.__class__.__name__)
        return _build_error_response(
            correlation_id=correlation_id,
            error_type="domain_error",
            message=str(exc) or "Domain error",
            environment=environment,
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    structured_logger.exception(
        "Unhandled exception", exception_type=exc.__class__.__name__
    )
    traceback_str: str | None = None
    if environment != "production":
        import traceback as _tb

        traceback_str = "".join(_tb.format_exception(exc)).strip()

    return _build_error_response(
        correlation_id=correlation_id,
        error_type="internal_server_error",
        message="An internal error occurred",
        environment=environment,
        traceback_str=traceback_str,
        exception_type=exc.__class__.__name__,
    )


def setup_logging() -> None:
    """Configure root logging once: JSON in production, plain text otherwise."""
    settings = get_settings()

    log_level = logging.DEBUG if settings.ENVIRONMENT == "development" else logging.INFO
    root_logger = logging.getLogger()

    # Idempotent: keep handlers installed by an earlier call or by the runner
    if root_logger.handlers:
        return

    formatter: logging.Formatter
    if settings.ENVIRONMENT == "production":
        from pythonjsonlogger.json import JsonFormatter

        formatter = JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(log_level)

    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    if settings.ENVIRONMENT == "production":
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("google_genai").setLevel(logging.WARNING)
