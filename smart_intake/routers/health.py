# smart_intake/routers/health.py
from __future__ import annotations

from fastapi import APIRouter

from ..config import settings
from ..schemas import HealthOut
from ..services.session_store import SESSION_STORE

router = APIRouter(prefix="/health", tags=["ops"])


@router.get("", response_model=HealthOut, response_model_by_alias=True)
def health():
    return HealthOut(status="ok", version=settings.app_version, active_sessions=len(SESSION_STORE))
