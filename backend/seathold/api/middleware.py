"""
Request middleware for logging, timing, and request ID tracking.
"""

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import structlog

from seathold.core.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Probes hit these every few seconds; log them at debug only
QUIET_PATHS = frozenset({"/health", "/metrics"})

_RESOURCE_PATH = re.compile(
    r"/api/v1/(?P<kind>shows|reservations)/(?P<id>[0-9a-fA-F-]{36})(?:/|$)"
)


def _resource_context(path: str) -> dict:
    match = _RESOURCE_PATH.search(path)
    if match is None:
        return {}
    key = "show_id" if match.group("kind") == "shows" else "reservation_id"
    return {key: match.group("id").lower()}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that:
    1. Reuses the caller's X-Request-ID (payment callbacks send one) or assigns one
    2. Binds request context, plus the show or reservation id from the path,
       to structlog for correlation
    3. Logs status code and duration of every request

    For seat streams the logged duration is time-to-first-byte; the stream
    itself logs when it opens and closes.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())[:8]
        path = request.url.path
        start_time = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
            **_resource_context(path),
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        log = logger.debug if path in QUIET_PATHS else logger.info
        log(
            "request_completed",
            status_code=response.status_code,
            duration_ms=duration_ms,
            streaming=path.endswith("/seats/stream"),
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        return response
