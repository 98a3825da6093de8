"""
Request middleware — correlation IDs, timing, one access log line per request.

Provides:
    • X-Request-ID correlation id (client-supplied or generated), kept on
      `request.state.request_id` so error envelopes can carry it too
    • X-Process-Time header
    • Request context for downstream log enrichment, cleared afterwards
    • Access log line with the authenticated user when auth succeeded

    request ──► RequestLoggingMiddleware ──► routes ──► get_current_user
                  │                                         │
                  │  request.state.request_id               │ request.state.user_id
                  ▼                                         ▼
              "PUT /emergency/alerts/…/resolve → 200 (41.2ms) [10.0.0.7] user=42"

Unhandled exceptions propagate to the error handlers (see core.errors),
which stamp the same X-Request-ID on the 500 envelope.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Paths not worth a log line per hit
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        request.state.request_id = request_id
        set_request_context(
            request_id=request_id,
            client_ip=client_ip,
            endpoint=path,
            method=request.method,
        )

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers["X-Process-Time"] = f"{(time.perf_counter() - start) * 1000:.1f}ms"
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            user_id = getattr(request.state, "user_id", None)
            if status_code >= 500 or not path.startswith(_QUIET_PREFIXES):
                self._log(request, path, status_code, duration_ms, client_ip, user_id)
            set_request_context()

    @staticmethod
    def _log(request: Request, path: str, status_code: int, duration_ms: float,
             client_ip: str, user_id) -> None:
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        who = f" user={user_id}" if user_id is not None else ""
        logger.log(
            level,
            "%s %s → %d (%.1fms) [%s]%s",
            request.method, path, status_code, duration_ms, client_ip, who,
            extra={
                "duration_ms": duration_ms,
                "status_code": status_code,
                "endpoint": path,
                "user_id": user_id,
            },
        )
