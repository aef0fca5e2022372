"""
Request middleware.

Each request runs inside a log context carrying its request id, so records
from the scheduler, device and history services it calls are tagged with
it. The response gets ``X-Request-ID`` (echoed when the client sent one)
and ``X-Process-Time``.

Access log levels follow the outcome: 5xx → ERROR, 4xx → WARNING,
everything else INFO. Liveness probes and the docs are not logged.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from skycast.app.core.logging_config import log_context

logger = logging.getLogger(__name__)

UNLOGGED_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path
        started = time.perf_counter()

        with log_context(
            request_id=request_id,
            client_ip=request.client.host if request.client else None,
            method=request.method,
            endpoint=path,
        ):
            status_code = 500
            try:
                response = await call_next(request)
                status_code = response.status_code
            finally:
                elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
                if not path.startswith(UNLOGGED_PREFIXES):
                    logger.log(
                        _level_for(status_code),
                        "%s %s → %d in %.1fms", request.method, path, status_code, elapsed_ms,
                        extra={"status_code": status_code, "duration_ms": elapsed_ms},
                    )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.1f}ms"
        return response
