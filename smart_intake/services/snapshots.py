# smart_intake/services/snapshots.py
"""
Best-effort durable snapshots of pipeline sessions.

Writes never raise: a failure is logged and reported as False. The
in-memory Session stays authoritative while a run is in flight.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..db import session_scope
from ..domain.errors import PersistenceFailure
from ..domain.pipeline_types import PipelineSession
from ..models import PipelineSessionSnapshot

log = logging.getLogger(__name__)


def _dumps(v: Any) -> Optional[str]:
    if v is None:
        return None
    return json.dumps(v, ensure_ascii=False, default=str)


def _loads(s: Optional[str], default: Any) -> Any:
    if not s:
        return default
    try:
        return json.loads(s)
    except Exception:
        return default


def _naive_utc(iso: Optional[str]) -> Optional[datetime]:
    if not iso:
        return None
    dt = datetime.fromisoformat(iso)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _apply_state(row: PipelineSessionSnapshot, state: dict[str, Any]) -> None:
    row.status = state["status"]
    row.current_phase = state["currentPhase"]
    row.phase_results_json = _dumps(state.get("phases"))
    row.files_metadata_json = _dumps(state.get("files"))
    row.extracted_data_json = _dumps(state.get("extractedData"))
    row.clarifications_json = _dumps(state.get("clarifications"))
    row.answers_json = _dumps(state.get("clarificationAnswers"))
    row.tool_results_json = _dumps(state.get("toolResults"))
    row.red_flags_json = _dumps(state.get("redFlags"))
    row.synthesis_json = _dumps(state.get("synthesis"))
    row.completeness_score = int(state.get("completenessScore") or 0)
    row.missing_documents_json = _dumps(state.get("missingDocuments"))
    row.deal_id = state.get("dealId")
    row.error = state.get("error")
    row.created_at = _naive_utc(state.get("createdAt")) or datetime.utcnow()
    row.updated_at = _naive_utc(state.get("updatedAt")) or datetime.utcnow()
    row.completed_at = _naive_utc(state.get("completedAt"))


def write_snapshot(state: dict[str, Any]) -> None:
    """Upsert one row from a `PipelineSession.to_dict()` payload. Raises PersistenceFailure."""
    try:
        with session_scope() as db:
            row = db.get(PipelineSessionSnapshot, state["id"])
            if row is None:
                row = PipelineSessionSnapshot(id=state["id"])
                db.add(row)
            _apply_state(row, state)
    except Exception as e:
        raise PersistenceFailure(f"snapshot write failed for session {state.get('id')}: {e}", e) from e


class SnapshotWriter:
    """Default snapshot sink: one SQLAlchemy upsert per call, run off the event loop."""

    async def save(self, session: PipelineSession) -> bool:
        if not settings.persist_snapshots:
            return False
        try:
            # serialize on the loop thread; the session keeps mutating afterwards
            state = session.to_dict()
            await asyncio.to_thread(write_snapshot, state)
            return True
        except Exception:
            log.warning("snapshot_write_failed", exc_info=True, extra={"session_id": session.id, "phase": session.current_phase})
            return False


def read_snapshot(db: Session, session_id: str) -> Optional[dict[str, Any]]:
    """Persisted view of a session, in the same camelCase shape as `PipelineSession.to_dict()`."""
    row = db.get(PipelineSessionSnapshot, session_id)
    if row is None:
        return None
    return {
        "id": row.id,
        "status": row.status,
        "currentPhase": row.current_phase,
        "phases": _loads(row.phase_results_json, {}),
        "files": _loads(row.files_metadata_json, []),
        "extractedData": _loads(row.extracted_data_json, {}),
        "clarifications": _loads(row.clarifications_json, []),
        "clarificationAnswers": _loads(row.answers_json, []),
        "toolResults": _loads(row.tool_results_json, []),
        "redFlags": _loads(row.red_flags_json, []),
        "synthesis": _loads(row.synthesis_json, None),
        "completenessScore": row.completeness_score,
        "missingDocuments": _loads(row.missing_documents_json, []),
        "dealId": row.deal_id,
        "error": row.error,
        "createdAt": _iso(row.created_at),
        "updatedAt": _iso(row.updated_at),
        "completedAt": _iso(row.completed_at),
    }
