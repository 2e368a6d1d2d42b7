# tests/test_pipeline_flow.py
from __future__ import annotations

import asyncio
import logging

import pytest

from smart_intake.domain.errors import CollaboratorUnavailable
from smart_intake.domain.pipeline_types import PHASES, ClarificationAnswer, UploadedFile
from smart_intake.services.collaborators import PipelineCollaborators
from smart_intake.services.deal_writer import DealRecord
from smart_intake.services.file_reader import read_file
from smart_intake.services.pipeline import SmartIntakePipeline
from smart_intake.services.runtime_metrics import METRICS
from smart_intake.services.session_store import SessionStore

INCOME_ONLY = "Income Statement\nTotal Revenue: $1,200,000\nNet Operating Income: $180,000\n"
WITH_FACILITY = (
    "Facility Name: Maple Grove Manor\n"
    "Location: Dayton, OH\n"
    "120 licensed beds\n"
    "Total Revenue: $6,000,000\n"
    "Total Expenses: $5,100,000\n"
    "Net Operating Income: $900,000\n"
    "Asking Price: $9,000,000\n"
)


def _file(name: str, text: str) -> UploadedFile:
    return UploadedFile(filename=name, content=text.encode("utf-8"), media_type="text/plain")


class FakeDealWriter:
    def __init__(self, fail_with: Exception | None = None, deal_id: str = "deal-1") -> None:
        self.fail_with = fail_with
        self.deal_id = deal_id
        self.created = []
        self.reviewed = []

    async def create_deal(self, *, session_id, data, files):
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append((session_id, data.suggested_deal_name, len(files)))
        return DealRecord(deal_id=self.deal_id, facility_ids=[f"fac-{i}" for i, _ in enumerate(data.facilities)])

    async def mark_reviewed(self, deal_id, analysis):
        self.reviewed.append(deal_id)


class RecordingSnapshots:
    def __init__(self) -> None:
        self.statuses: list[str] = []

    async def save(self, session) -> bool:
        self.statuses.append(session.to_dict()["status"])
        return True


class FakeSummarizer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    async def market_context(self, *, asset_type, state):
        if self.fail:
            raise CollaboratorUnavailable("LLM not configured")
        return f"{asset_type} demand in {state or 'the region'} is stable."

    async def executive_summary(self, prompt):
        if self.fail:
            raise CollaboratorUnavailable("LLM not configured")
        return "Summary paragraph."


def _collab(**overrides) -> PipelineCollaborators:
    overrides.setdefault("deal_writer", FakeDealWriter())
    overrides.setdefault("snapshots", RecordingSnapshots())
    return PipelineCollaborators(**overrides)


async def _drive(pipe: SmartIntakePipeline, files, answer=None):
    """Runs the pipeline while draining its events; `answer(event)` is called on clarification_needed."""
    sub = pipe.channel.subscribe()
    task = asyncio.create_task(pipe.execute(files))
    events = []
    async for ev in sub:
        events.append(ev)
        if ev.type == "clarification_needed" and answer is not None:
            assert pipe.resume(answer(ev)) is True
    await task
    return events


def _phase_transitions(events):
    return [(e.type, e.data["phase"]) for e in events if e.type in ("phase_started", "phase_completed")]


def test_deal_name_override_flows_into_synthesis():
    store = SessionStore()
    snaps = RecordingSnapshots()
    pipe = SmartIntakePipeline(collaborators=_collab(snapshots=snaps), store=store)

    def override(ev):
        (req,) = ev.data["clarifications"]
        assert (req["fieldLabel"], req["type"], req["priority"]) == ("Deal Name", "missing", 10)
        return [ClarificationAnswer(req["id"], "override", "Test Portfolio")]

    events = asyncio.run(_drive(pipe, [_file("income_statement.txt", INCOME_ONLY)], override))
    session = pipe.session

    assert session.status == "completed"
    assert session.synthesis.deal_name == "Test Portfolio"
    assert session.synthesis.investment_thesis.startswith("Test Portfolio")
    assert session.deal_id == "deal-1"

    types = [e.type for e in events]
    assert types[0] == "pipeline_started"
    assert types[-1] == "pipeline_complete"
    assert types.count("pipeline_complete") == 1
    assert "clarifications_resolved" in types
    assert events[-1].data["dealId"] == "deal-1"
    assert events[-1].data["summary"]["dealName"] == "Test Portfolio"

    fields = {e.data["field"]: e.data["value"] for e in events if e.type == "field_extracted"}
    assert fields == {"totalRevenue": 1_200_000, "noi": 180_000}

    assert "paused_for_clarification" in snaps.statuses
    assert snaps.statuses[-1] == "completed"
    assert len(store) == 0
    assert pipe.channel.closed


def test_phases_run_one_at_a_time_in_order():
    pipe = SmartIntakePipeline(collaborators=_collab(), store=SessionStore())
    events = asyncio.run(_drive(pipe, [_file("t12.txt", WITH_FACILITY)]))

    expected = []
    for p in PHASES:
        expected += [("phase_started", p), ("phase_completed", p)]
    assert _phase_transitions(events) == expected
    assert pipe.session.running_phases() == []
    assert all(rec.status == "completed" for rec in pipe.session.phases.values())


def test_clean_package_needs_no_clarification():
    pipe = SmartIntakePipeline(collaborators=_collab(), store=SessionStore())
    events = asyncio.run(_drive(pipe, [_file("t12.txt", WITH_FACILITY)]))

    types = [e.type for e in events]
    assert "clarification_needed" not in types
    assert [e.data["name"] for e in events if e.type == "facility_detected"] == ["Maple Grove Manor"]
    clarify_done = next(e for e in events if e.type == "phase_completed" and e.data["phase"] == "clarify")
    assert clarify_done.data["summary"] == "No clarifications needed"

    tools = [e.data for e in events if e.type == "tool_executed"]
    assert len(tools) == 5
    assert {t["status"] for t in tools} == {"success"}
    assert pipe.session.synthesis.valuation_summary["capRate"] == 10.0


def test_empty_answers_resume_like_all_skip():
    pipe = SmartIntakePipeline(collaborators=_collab(), store=SessionStore())
    events = asyncio.run(_drive(pipe, [_file("income_statement.txt", INCOME_ONLY)], lambda ev: []))

    session = pipe.session
    assert session.status == "completed"
    assert [a.action for a in session.clarification_answers] == ["skip"] * len(session.clarifications)
    assert session.synthesis.deal_name == "income statement"
    resolved = next(e for e in events if e.type == "clarifications_resolved")
    assert resolved.data["applied"] == []
    assert resolved.data["skipped"] == len(session.clarifications)


def test_one_broken_file_of_three_still_completes():
    def flaky_reader(upload):
        if upload.filename == "broken.pdf":
            raise ValueError("corrupt xref table")
        return read_file(upload)

    failed_before = METRICS.get("files_failed")
    pipe = SmartIntakePipeline(collaborators=_collab(read_file=flaky_reader), store=SessionStore())
    files = [
        _file("t12.txt", WITH_FACILITY),
        UploadedFile(filename="broken.pdf", content=b"%PDF-garbage", media_type="application/pdf"),
        _file("census.txt", "Average daily census 104"),
    ]
    events = asyncio.run(_drive(pipe, files))

    parsed = {e.data["filename"]: e.data for e in events if e.type == "file_parsed"}
    assert set(parsed) == {"t12.txt", "broken.pdf", "census.txt"}
    assert parsed["broken.pdf"]["status"] == "failed"
    assert parsed["broken.pdf"]["error"] == "corrupt xref table"
    assert parsed["t12.txt"]["status"] == "parsed"
    assert parsed["census.txt"]["docType"] == "census_report"

    broken = next(f for f in pipe.session.files if f.filename == "broken.pdf")
    assert (broken.document_type, broken.raw_text, broken.confidence) == ("unknown", "", 0.0)
    assert broken.summary.startswith("Failed to parse:")

    completeness = next(e for e in events if e.type == "completeness_check")
    assert completeness.data["score"] == 29
    assert pipe.session.status == "completed"
    assert METRICS.get("files_failed") == failed_before + 1


def test_phase_failure_emits_single_error_and_stops():
    writer = FakeDealWriter(fail_with=RuntimeError("database is locked"))
    pipe = SmartIntakePipeline(collaborators=_collab(deal_writer=writer), store=SessionStore())
    events = asyncio.run(_drive(pipe, [_file("t12.txt", WITH_FACILITY)]))

    types = [e.type for e in events]
    assert types.count("pipeline_error") == 1
    assert "pipeline_complete" not in types
    assert types[-1] == "pipeline_error"
    assert events[-1].data == {"phase": "assemble", "error": "database is locked"}

    session = pipe.session
    assert session.status == "failed"
    assert session.error == "database is locked"
    assert session.phases["assemble"].status == "failed"
    assert session.phases["analyze"].status == "pending"
    assert "phase_started" not in [t for t, p in _phase_transitions(events) if p == "analyze"]


def test_analyze_skipped_without_deal_id():
    pipe = SmartIntakePipeline(collaborators=_collab(deal_writer=FakeDealWriter(deal_id="")), store=SessionStore())
    events = asyncio.run(_drive(pipe, [_file("t12.txt", WITH_FACILITY)]))

    done = next(e for e in events if e.type == "phase_completed" and e.data["phase"] == "analyze")
    assert done.data["status"] == "skipped"
    assert done.data["summary"] == "Skipped: no deal created"
    assert pipe.session.status == "completed"
    assert pipe.session.synthesis.investment_thesis == "Maple Grove Manor: insufficient data for a complete thesis."


def test_analyzer_failure_degrades_but_completes():
    class BrokenAnalyzer:
        async def analyze(self, **kwargs):
            raise CollaboratorUnavailable("analysis service down")

    pipe = SmartIntakePipeline(collaborators=_collab(deal_analyzer=BrokenAnalyzer()), store=SessionStore())
    events = asyncio.run(_drive(pipe, [_file("t12.txt", WITH_FACILITY)]))

    assert "analysis_complete" not in [e.type for e in events]
    assert pipe.session.analysis_result is None
    assert pipe.session.status == "completed"
    assert pipe.session.synthesis.deal_score == 50.0


def test_summarizer_output_is_used_when_available():
    pipe = SmartIntakePipeline(collaborators=_collab(summarizer=FakeSummarizer()), store=SessionStore())
    asyncio.run(_drive(pipe, [_file("t12.txt", WITH_FACILITY)]))

    assert pipe.session.synthesis.executive_summary == "Summary paragraph."
    assert "stable" in pipe.session.analysis_result.narrative


def test_unavailable_summarizer_never_blocks_completion():
    pipe = SmartIntakePipeline(collaborators=_collab(summarizer=FakeSummarizer(fail=True)), store=SessionStore())
    asyncio.run(_drive(pipe, [_file("t12.txt", WITH_FACILITY)]))

    assert pipe.session.status == "completed"
    assert pipe.session.synthesis.executive_summary is None


def test_resume_is_noop_unless_paused():
    pipe = SmartIntakePipeline(collaborators=_collab(), store=SessionStore())
    assert pipe.resume([]) is False


def test_zero_files_rejected():
    store = SessionStore()
    pipe = SmartIntakePipeline(collaborators=_collab(), store=store)
    with pytest.raises(ValueError):
        asyncio.run(pipe.execute([]))
    assert len(store) == 0


class DownDocumentAnalyzer:
    async def analyze(self, *, text, document_type, filename):
        raise CollaboratorUnavailable("LLM not configured")


class FailingSnapshots:
    def __init__(self) -> None:
        self.calls = 0

    async def save(self, session) -> bool:
        self.calls += 1
        raise OSError("disk full")


def test_document_analyzer_outage_falls_back_per_file(caplog):
    caplog.set_level(logging.WARNING, logger="smart_intake.services.pipeline")
    pipe = SmartIntakePipeline(collaborators=_collab(document_analyzer=DownDocumentAnalyzer()), store=SessionStore())
    events = asyncio.run(_drive(pipe, [_file("t12.txt", WITH_FACILITY), _file("census.txt", "Average daily census 104")], lambda ev: []))

    assert pipe.session.status == "completed"
    assert events[-1].type == "pipeline_complete"
    for pf in pipe.session.files:
        assert pf.summary == f"{pf.document_type} document"
        assert pf.confidence == 30.0
        assert pf.error is None

    outages = [r for r in caplog.records if r.getMessage() == "document_analysis_unavailable"]
    assert {r.upload_filename for r in outages} == {"t12.txt", "census.txt"}


def test_failed_file_warning_carries_upload_filename(caplog):
    caplog.set_level(logging.WARNING, logger="smart_intake.services.pipeline")

    def broken_reader(upload):
        raise ValueError("truncated stream")

    pipe = SmartIntakePipeline(collaborators=_collab(read_file=broken_reader), store=SessionStore())
    asyncio.run(_drive(pipe, [_file("om.pdf", "x")], lambda ev: []))

    assert pipe.session.status == "completed"
    (record,) = [r for r in caplog.records if r.getMessage() == "file_parse_failed"]
    assert record.upload_filename == "om.pdf"
    assert record.phase == "ingest"


def test_snapshot_sink_failure_never_stops_the_run():
    snaps = FailingSnapshots()
    pipe = SmartIntakePipeline(collaborators=_collab(snapshots=snaps), store=SessionStore())
    events = asyncio.run(_drive(pipe, [_file("t12.txt", WITH_FACILITY)]))

    assert snaps.calls >= len(PHASES)
    assert pipe.session.status == "completed"
    assert [e.type for e in events].count("pipeline_complete") == 1
    assert events[-1].type == "pipeline_complete"


def test_snapshot_sink_failure_still_reports_phase_failure():
    writer = FakeDealWriter(fail_with=RuntimeError("database is locked"))
    pipe = SmartIntakePipeline(collaborators=_collab(deal_writer=writer, snapshots=FailingSnapshots()), store=SessionStore())
    events = asyncio.run(_drive(pipe, [_file("t12.txt", WITH_FACILITY)]))

    assert pipe.session.status == "failed"
    assert events[-1].type == "pipeline_error"
    assert events[-1].data == {"phase": "assemble", "error": "database is locked"}


def test_analysis_event_payload():
    pipe = SmartIntakePipeline(collaborators=_collab(), store=SessionStore())
    events = asyncio.run(_drive(pipe, [_file("t12.txt", WITH_FACILITY)]))

    (analysis,) = [e for e in events if e.type == "analysis_complete"]
    assert set(analysis.data) == {"score", "thesis", "valuationRange", "riskCount"}
