"""
Request logging middleware. Logs method, path, status, duration only.
Bodies are never logged: sync payloads carry balances and account ids.
"""
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request and tag the response with an X-Request-ID header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        method = request.method
        path = request.scope.get("path", "")
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        status = response.status_code
        response.headers["X-Request-ID"] = request_id

        if status >= 500:
            log = logger.error
        elif status >= 400:
            log = logger.warning
        else:
            log = logger.info
        log(
            "request_finished request_id=%s method=%s path=%s status=%s duration_ms=%.1f",
            request_id, method, path, status, duration_ms,
        )
        return response
