"""
AINotes Backend — Request Logging Middleware
==============================================

What:  One access log line per HTTP request: method, path, status, duration.
How:   Measures wall time around call_next and picks the level from the status.
When:  Runs inside RequestIDMiddleware, so the request ID is already set.

Typical durations:
    GET /health                        1-5ms (skipped, too frequent)
    GET /api/notes/{id}/related        10-50ms (one owner scan + numpy ranking)
    POST /api/notes/backfill/tags      seconds to minutes (one Gemini call per note)

Request bodies are never logged; they carry owner subjects.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ainotes.middleware.request_id import request_id_var

logger = logging.getLogger("ainotes.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs 5xx at ERROR, 4xx at WARNING and everything else at INFO."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")
        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "status": status,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return response
