"""
Request middleware — correlation IDs and timing for the device agent.

Every response carries:
    • X-Request-ID     — echoed from the UI or generated here
    • X-Process-Time   — handler duration

Health probes are polled by the UI status indicator, so they are logged at
DEBUG; everything else at INFO (WARNING for 4xx/5xx).
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from lifeline.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

_QUIET_PREFIXES = ("/health", "/docs", "/redoc", "/openapi", "/favicon")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Attach a correlation id to the log context and time each request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path
        set_request_context(request_id=request_id, endpoint=path, method=request.method)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "%s %s → 500 (%.1fms)", request.method, path,
                (time.perf_counter() - start) * 1000,
                extra={"status_code": 500, "endpoint": path},
            )
            raise
        finally:
            set_request_context()

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if response.status_code >= 400:
            level = logging.WARNING
        elif path.startswith(_QUIET_PREFIXES):
            level = logging.DEBUG
        else:
            level = logging.INFO
        logger.log(
            level, "%s %s → %d (%.1fms)",
            request.method, path, response.status_code, duration_ms,
            extra={"duration_ms": duration_ms, "status_code": response.status_code,
                   "endpoint": path},
        )
        return response
