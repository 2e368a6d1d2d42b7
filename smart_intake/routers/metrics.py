# smart_intake/routers/metrics.py
from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from ..services.runtime_metrics import METRICS
from ..services.session_store import SESSION_STORE

router = APIRouter(prefix="/metrics", tags=["ops"])


@router.get("", response_class=PlainTextResponse)
def pipeline_metrics() -> str:
    return METRICS.render_text({"sessions_in_flight": len(SESSION_STORE)})
