# smart_intake/middleware/request_id.py
from __future__ import annotations

import re
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
SESSION_ID_HEADER = "X-Pipeline-Session-Id"

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
pipeline_session_ctx: ContextVar[Optional[str]] = ContextVar("pipeline_session_id", default=None)

# /api/pipeline/<id>[/events|/clarifications]; "stream" and "clarify" are verbs, not ids
_SESSION_PATH = re.compile(r"/pipeline/(?!stream$|clarify$)([^/]+)")


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


def get_pipeline_session_id() -> Optional[str]:
    return pipeline_session_ctx.get()


def session_id_from_request(request: Request) -> Optional[str]:
    sid = request.headers.get(SESSION_ID_HEADER)
    if sid:
        return sid
    m = _SESSION_PATH.search(request.url.path)
    return m.group(1) if m else None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Binds request-scoped ids for logging.

    request id: incoming X-Request-ID / X-Request-Id, else a fresh uuid4; echoed back.
    pipeline session id: X-Pipeline-Session-Id header or the /pipeline/<id> path segment.
    Tasks started inside the request inherit both through contextvars.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or request.headers.get("X-Request-Id") or str(uuid.uuid4())
        sid = session_id_from_request(request)

        request.state.request_id = rid
        request.state.pipeline_session_id = sid
        rid_token = request_id_ctx.set(rid)
        sid_token = pipeline_session_ctx.set(sid)
        try:
            resp = await call_next(request)
            resp.headers[REQUEST_ID_HEADER] = rid
            return resp
        finally:
            pipeline_session_ctx.reset(sid_token)
            request_id_ctx.reset(rid_token)
