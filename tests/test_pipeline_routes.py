# tests/test_pipeline_routes.py
from __future__ import annotations

import json
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from smart_intake.db import SessionLocal
from smart_intake.domain.pipeline_types import PipelineSession
from smart_intake.main import create_app
from smart_intake.models import AnalysisStage, Deal, Facility
from smart_intake.routers.pipeline import get_collaborators
from smart_intake.services.collaborators import PipelineCollaborators
from smart_intake.services.snapshots import write_snapshot

INCOME_ONLY = "Income Statement\nTotal Revenue: $1,200,000\nNet Operating Income: $180,000\n"
WITH_FACILITY = (
    "Facility Name: Maple Grove Manor\n"
    "Location: Dayton, OH\n"
    "120 licensed beds\n"
    "Total Revenue: $6,000,000\n"
    "Net Operating Income: $900,000\n"
)


@pytest.fixture()
def client():
    app = create_app()
    # offline collaborators: rule-based analysis, no registry or LLM calls
    app.dependency_overrides[get_collaborators] = lambda: PipelineCollaborators()
    with TestClient(app) as c:
        yield c


def _upload(name: str, text: str):
    return [("files", (name, text.encode("utf-8"), "text/plain"))]


def _poll(fn, until, timeout=10.0):
    deadline = time.monotonic() + timeout
    while True:
        value = fn()
        if until(value) or time.monotonic() > deadline:
            return value
        time.sleep(0.02)


def _parse_sse(text: str) -> list[dict]:
    out = []
    for block in text.split("\n\n"):
        if not block.strip():
            continue
        event_line, data_line = block.split("\n")
        body = json.loads(data_line[len("data: "):])
        assert event_line == f"event: {body['type']}"
        out.append(body)
    return out


def test_stream_runs_to_completion(client):
    r = client.post("/api/pipeline/stream", files=_upload("t12.txt", WITH_FACILITY))
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    sid = r.headers["X-Pipeline-Session-Id"]

    events = _parse_sse(r.text)
    assert events[0]["type"] == "pipeline_started"
    assert events[-1]["type"] == "pipeline_complete"
    assert {e["sessionId"] for e in events} == {sid}

    state = _poll(lambda: client.get(f"/api/pipeline/{sid}").json(), lambda s: s["status"] == "completed")
    assert state["status"] == "completed"
    assert state["synthesis"]["dealName"] == "Maple Grove Manor"

    db = SessionLocal()
    try:
        deal = db.get(Deal, state["dealId"])
        assert deal is not None
        assert deal.status == "reviewed"
        assert deal.source_session_id == sid
        stages = db.scalars(select(AnalysisStage).where(AnalysisStage.deal_id == deal.id)).all()
        assert sorted(s.order for s in stages) == [1, 2, 3, 4, 5, 6]
        facilities = db.scalars(select(Facility).where(Facility.deal_id == deal.id)).all()
        assert [f.name for f in facilities] == ["Maple Grove Manor"]
    finally:
        db.close()


def test_background_run_pauses_and_resumes_over_http(client):
    r = client.post("/api/pipeline", files=_upload("income_statement.txt", INCOME_ONLY))
    assert r.status_code == 202
    sid = r.json()["sessionId"]

    pending = _poll(
        lambda: client.get(f"/api/pipeline/{sid}/clarifications").json(),
        lambda b: b["status"] == "paused_for_clarification",
    )
    assert pending["status"] == "paused_for_clarification"
    (req,) = pending["clarifications"]
    assert req["fieldLabel"] == "Deal Name"

    r = client.post(
        "/api/pipeline/clarify",
        json={
            "sessionId": sid,
            "answers": [{"clarificationId": req["id"], "action": "override", "value": "Test Portfolio"}],
        },
    )
    assert r.status_code == 200
    assert r.json()["resumed"] is True

    state = _poll(lambda: client.get(f"/api/pipeline/{sid}").json(), lambda s: s["status"] == "completed")
    assert state["status"] == "completed"
    assert state["synthesis"]["dealName"] == "Test Portfolio"
    assert state["synthesis"]["investmentThesis"].startswith("Test Portfolio")

    # finished sessions ignore further answers
    again = client.post("/api/pipeline/clarify", json={"sessionId": sid, "answers": []})
    assert again.status_code == 200
    assert again.json()["resumed"] is False


def test_unknown_session_is_404(client):
    assert client.get("/api/pipeline/does-not-exist").status_code == 404
    assert client.get("/api/pipeline/does-not-exist/events").status_code == 404
    assert client.get("/api/pipeline/does-not-exist/clarifications").status_code == 404


def test_resume_unknown_session_is_noop(client):
    r = client.post("/api/pipeline/clarify", json={"sessionId": "does-not-exist", "answers": []})
    assert r.status_code == 200
    assert r.json() == {"sessionId": "does-not-exist", "resumed": False, "status": None}


def test_invalid_action_rejected(client):
    r = client.post(
        "/api/pipeline/clarify",
        json={"sessionId": "x", "answers": [{"clarificationId": "c1", "action": "maybe"}]},
    )
    assert r.status_code == 422


def test_zero_files_is_400(client):
    assert client.post("/api/pipeline", data={"note": "nothing attached"}).status_code == 400
    assert client.post("/api/pipeline/stream", data={"note": "nothing attached"}).status_code == 400


def test_health_and_metrics(client):
    h = client.get("/api/health")
    assert h.status_code == 200
    assert h.json()["status"] == "ok"
    assert "activeSessions" in h.json()

    m = client.get("/api/metrics")
    assert m.status_code == 200
    assert "pipelines_started " in m.text
    assert "events_published " in m.text


def test_evicted_session_is_served_from_its_snapshot(client):
    finished = PipelineSession(id="snapshot-only-session", status="completed", completeness_score=29)
    write_snapshot(finished.to_dict())

    body = client.get("/api/pipeline/snapshot-only-session").json()
    assert body["id"] == "snapshot-only-session"
    assert body["status"] == "completed"
    assert body["completenessScore"] == 29
    assert set(body["phases"]) == set(finished.phases)

    r = client.get("/api/pipeline/snapshot-only-session/clarifications")
    assert r.status_code == 200
    assert r.json() == {"sessionId": "snapshot-only-session", "status": "completed", "clarifications": []}
