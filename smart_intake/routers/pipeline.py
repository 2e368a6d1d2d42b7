# smart_intake/routers/pipeline.py
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..domain.pipeline_types import UploadedFile
from ..schemas import ClarificationsOut, ClarifyIn, ClarifyOut, PipelineStartedOut
from ..services.collaborators import PipelineCollaborators
from ..services.event_channel import Subscription
from ..services.pipeline import SmartIntakePipeline
from ..services.session_store import SESSION_STORE
from ..services.snapshots import read_snapshot

router = APIRouter(prefix="/pipeline", tags=["pipeline"])

SESSION_HEADER = "X-Pipeline-Session-Id"
_SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def get_collaborators() -> PipelineCollaborators:
    return PipelineCollaborators.default()


async def _read_uploads(files: Optional[list[UploadFile]]) -> list[UploadedFile]:
    out: list[UploadedFile] = []
    for f in files or []:
        content = await f.read()
        out.append(
            UploadedFile(
                filename=f.filename or "upload",
                content=content,
                media_type=f.content_type or "application/octet-stream",
            )
        )
    if not out:
        raise HTTPException(status_code=400, detail="at least one file is required")
    return out


async def _sse(sub: Subscription) -> AsyncIterator[str]:
    try:
        async for event in sub:
            yield event.to_sse()
    finally:
        sub.close()


def _stream(pipeline: SmartIntakePipeline, sub: Subscription) -> StreamingResponse:
    headers = dict(_SSE_HEADERS)
    headers[SESSION_HEADER] = pipeline.id
    return StreamingResponse(_sse(sub), media_type="text/event-stream", headers=headers)


def _start(pipeline: SmartIntakePipeline, uploads: list[UploadedFile]) -> None:
    try:
        pipeline.start(uploads)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/stream")
async def start_streaming(
    files: Optional[list[UploadFile]] = File(default=None),
    collaborators: PipelineCollaborators = Depends(get_collaborators),
):
    uploads = await _read_uploads(files)
    pipeline = SmartIntakePipeline(collaborators=collaborators)
    # subscribe first so nothing is missed even if history overflows
    sub = pipeline.channel.subscribe()
    _start(pipeline, uploads)
    return _stream(pipeline, sub)


@router.post("", response_model=PipelineStartedOut, status_code=202)
async def start_background(
    files: Optional[list[UploadFile]] = File(default=None),
    collaborators: PipelineCollaborators = Depends(get_collaborators),
):
    uploads = await _read_uploads(files)
    pipeline = SmartIntakePipeline(collaborators=collaborators)
    _start(pipeline, uploads)
    return PipelineStartedOut(session_id=pipeline.id, status="running")


@router.post("/clarify", response_model=ClarifyOut)
async def clarify(payload: ClarifyIn):
    pipeline = SESSION_STORE.get(payload.session_id)
    if pipeline is None:
        return ClarifyOut(session_id=payload.session_id, resumed=False)

    resumed = pipeline.resume([a.to_domain() for a in payload.answers])
    return ClarifyOut(session_id=payload.session_id, resumed=resumed, status=pipeline.session.status)


@router.get("/{session_id}/events")
async def reconnect(session_id: str):
    pipeline = SESSION_STORE.get(session_id)
    if pipeline is None:
        raise HTTPException(status_code=404, detail="session not found")
    return _stream(pipeline, pipeline.channel.subscribe())


@router.get("/{session_id}/clarifications", response_model=ClarificationsOut)
async def pending_clarifications(session_id: str, db: Session = Depends(get_db)):
    pipeline = SESSION_STORE.get(session_id)
    if pipeline is not None:
        session = pipeline.session
        return ClarificationsOut(
            session_id=session_id,
            status=session.status,
            clarifications=[c.as_dict() for c in session.pending_clarifications()],
        )

    snap = await asyncio.to_thread(read_snapshot, db, session_id)
    if snap is None:
        raise HTTPException(status_code=404, detail="session not found")
    # a finished session has nothing left to answer
    return ClarificationsOut(session_id=session_id, status=snap["status"], clarifications=[])


@router.get("/{session_id}", response_model=dict)
async def get_session(session_id: str, db: Session = Depends(get_db)):
    pipeline = SESSION_STORE.get(session_id)
    if pipeline is not None:
        return pipeline.session.to_dict()

    snap = await asyncio.to_thread(read_snapshot, db, session_id)
    if snap is None:
        raise HTTPException(status_code=404, detail="session not found")
    return snap
