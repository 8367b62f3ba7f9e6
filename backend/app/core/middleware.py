"""
Request middleware: correlation id, timing and one access-log line per request.

Response headers:
    X-Request-ID    echoed from the caller, or generated
    X-Process-Time  wall time spent in the app, e.g. ``12.3ms``

Access lines are INFO for 2xx/3xx, WARNING for 4xx and ERROR for 5xx.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import log_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Liveness and docs traffic is not logged
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind the request's log context and write its access line."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        path = request.url.path
        start = time.perf_counter()

        with log_context(request_id=request_id, method=request.method, endpoint=path):
            try:
                response = await call_next(request)
            except Exception:
                self._access_line(request, 500, _elapsed_ms(start))
                raise

            duration_ms = _elapsed_ms(start)
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
            if not path.startswith(_QUIET_PREFIXES):
                self._access_line(request, response.status_code, duration_ms)

        return response

    @staticmethod
    def _access_line(request: Request, status_code: int, duration_ms: float) -> None:
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            "%s %s → %d (%.1fms)",
            request.method, request.url.path, status_code, duration_ms,
            extra={"duration_ms": round(duration_ms, 1), "status_code": status_code},
        )
