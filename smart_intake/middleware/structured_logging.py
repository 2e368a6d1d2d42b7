# smart_intake/middleware/structured_logging.py
from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .request_id import SESSION_ID_HEADER, session_id_from_request

log = logging.getLogger("smart_intake.request")


def _json_log(payload: dict) -> None:
    try:
        log.info(json.dumps(payload, default=str))
    except (TypeError, ValueError):
        log.info(str(payload))


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    One `http_request` line per request: request_id, method, path, status_code,
    latency_ms and the pipeline session it touched (if any).

    request.state is read after the inner app ran, so the ids set by
    RequestIDMiddleware are visible regardless of middleware order. For SSE
    routes latency is time-to-first-byte, not stream duration.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        t0 = time.perf_counter()

        status_code = 500
        session_id: Optional[str] = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            session_id = response.headers.get(SESSION_ID_HEADER)
            return response
        finally:
            latency_ms = int((time.perf_counter() - t0) * 1000)

            _json_log(
                {
                    "event": "http_request",
                    "request_id": getattr(request.state, "request_id", None),
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "latency_ms": latency_ms,
                    "session_id": session_id or session_id_from_request(request),
                }
            )
