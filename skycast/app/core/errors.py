"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes (scheduler, upstream, notifications)
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Usage:
    from skycast.app.core.errors import (
        SkycastError,
        NotFoundError,
        InvalidCronError,
        ExternalServiceError,
        register_error_handlers,
    )

    raise NotFoundError("ForecastJob", id="morning-chicago")

Budget exhaustion is deliberately absent from this hierarchy: running out of
metered calls ends a backfill run and is reported as data, not raised.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from skycast.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class SkycastError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(SkycastError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class CityNotFoundError(SkycastError):
    """Geocoding returned no match for the requested location (404)."""

    def __init__(self, city: str):
        super().__init__(
            message=f"City not found: {city}",
            status_code=404,
            error_code="CITY_NOT_FOUND",
            details={"city": city},
        )
        self.city = city


class ValidationError(SkycastError):
    """Input validation failed (422)."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        error_code: str = "VALIDATION_ERROR",
        **details: Any,
    ):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code=error_code,
            details=d,
        )


class InvalidCronError(ValidationError):
    """Cron expression could not be parsed (422)."""

    def __init__(self, expression: str, reason: str = ""):
        message = f"Invalid cron expression: {expression}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message, field="cron", error_code="INVALID_CRON",
            expression=expression,
        )
        self.expression = expression


class InvalidTimezoneError(ValidationError):
    """Timezone is not a known IANA zone name (422)."""

    def __init__(self, timezone_name: str):
        super().__init__(
            f"Invalid timezone: {timezone_name}",
            field="timezone", error_code="INVALID_TIMEZONE",
            timezone=timezone_name,
        )
        self.timezone_name = timezone_name


class InvalidDateRangeError(ValidationError):
    """History query window is empty, inverted or too large (422)."""

    def __init__(self, message: str):
        super().__init__(
            f"Invalid date range: {message}",
            error_code="INVALID_DATE_RANGE",
        )


class AuthenticationError(SkycastError):
    """Missing or wrong API key (401)."""

    def __init__(self, message: str, error_code: str = "INVALID_API_KEY"):
        super().__init__(
            message=message,
            status_code=401,
            error_code=error_code,
        )


class SubscriptionRequiredError(SkycastError):
    """Upstream rejected the API key for One Call 3.0 (402)."""

    def __init__(self, service: str = "openweathermap"):
        super().__init__(
            message=(
                "One Call API subscription required. Subscribe at "
                "https://openweathermap.org/api/one-call-3"
            ),
            status_code=402,
            error_code="SUBSCRIPTION_REQUIRED",
            details={"service": service},
        )


class ExternalServiceError(SkycastError):
    """External API call failed (502)."""

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"External service '{service}' failed: {message}",
            status_code=502,
            error_code="EXTERNAL_SERVICE_ERROR",
            details={"service": service, **details},
        )
        self.service = service


class NotificationServiceError(SkycastError):
    """Delivery policy not met — e.g. every configured backend failed (502)."""

    def __init__(self, message: str, report: Any = None, **details: Any):
        super().__init__(
            message=f"Notification delivery failed: {message}",
            status_code=502,
            error_code="NOTIFICATION_FAILED",
            details=details,
        )
        self.report = report


class NoBackendsConfiguredError(SkycastError):
    """No notification backend is configured for the requested send (503)."""

    def __init__(self, backend: Optional[str] = None):
        message = (
            f"Notification backend '{backend}' is not configured"
            if backend else "No notification backends configured"
        )
        super().__init__(
            message=message,
            status_code=503,
            error_code="NOTIFICATIONS_NOT_CONFIGURED",
            details={"backend": backend} if backend else {},
        )


class StorageError(SkycastError):
    """Persisting or loading local state failed (500)."""

    def __init__(self, store: str, message: str = ""):
        super().__init__(
            message=f"Storage '{store}' failed: {message}",
            status_code=500,
            error_code="STORAGE_ERROR",
            details={"store": store},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(SkycastError)
    async def handle_skycast_error(request: Request, exc: SkycastError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
