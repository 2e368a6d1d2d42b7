# smart_intake/services/pipeline.py
"""
Phase sequencer for one intake run.

    ingest -> extract -> clarify -> assemble -> analyze -> tools -> synthesize

Phases run strictly in order against the shared PipelineSession. Units of work
inside Ingest and Tools run as unordered batches and fail individually. Clarify
can park the run until resume() supplies answers; there is no timeout.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from ..domain.clarifications import apply_answers, generate_clarifications, normalize_answers
from ..domain.completeness import detect_red_flags, evaluate_completeness, registry_flags
from ..domain.errors import FileParseFailure, PhaseFailure
from ..domain.extraction import (
    apply_financial_fields,
    extract_facilities,
    infer_asset_type,
    infer_deal_name,
    merge_facilities,
    parse_financial_fields,
)
from ..domain.pipeline_types import (
    PHASE_LABELS,
    ClarificationAnswer,
    ExtractedFacility,
    ParsedFile,
    PipelineSession,
    RedFlag,
    ToolResult,
    UploadedFile,
    utcnow,
)
from ..domain.synthesis import build_synthesis, executive_summary_prompt
from ..domain.tools import ToolInputs
from .collaborators import PipelineCollaborators
from .event_channel import EventChannel
from .runtime_metrics import METRICS
from .session_store import SESSION_STORE, SessionStore

log = logging.getLogger(__name__)

ANALYZER_FALLBACK_CONFIDENCE = 30.0


@dataclass(frozen=True)
class PhaseOutcome:
    summary: str
    status: str = "completed"  # completed|skipped


PhaseFn = Callable[["SmartIntakePipeline"], Awaitable[PhaseOutcome]]

# keeps fire-and-forget runs alive until they finish
_BACKGROUND_TASKS: set[asyncio.Task] = set()


class SmartIntakePipeline:
    def __init__(
        self,
        *,
        collaborators: Optional[PipelineCollaborators] = None,
        store: Optional[SessionStore] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.session = PipelineSession(id=session_id or str(uuid.uuid4()))
        self.channel = EventChannel(self.session.id)
        self.collab = collaborators or PipelineCollaborators.default()
        self.store = store if store is not None else SESSION_STORE

        self._files: list[UploadedFile] = []
        self._resume: Optional[asyncio.Future] = None
        self._started_at: Optional[float] = None

        self.store.add(self.session.id, self)

    @property
    def id(self) -> str:
        return self.session.id

    # ------------------------------------------------------------------
    # external interface
    # ------------------------------------------------------------------

    async def execute(self, files: Sequence[UploadedFile]) -> None:
        """Runs all phases. Outcome is observable through events and session state only."""
        if not files:
            self.store.remove(self.session.id)
            self.channel.close()
            raise ValueError("at least one file is required")
        if self.session.status != "idle":
            raise RuntimeError(f"session {self.session.id} already started")

        self._files = list(files)
        self._started_at = time.monotonic()
        self.session.status = "running"
        self.session.touch()
        METRICS.inc("pipelines_started")
        self.channel.start_heartbeat()

        self._emit(
            "pipeline_started",
            {
                "sessionId": self.session.id,
                "fileCount": len(self._files),
                "filenames": [f.filename for f in self._files],
            },
        )
        log.info("pipeline_started", extra={"session_id": self.session.id})

        try:
            for phase, fn in PHASE_SEQUENCE:
                await self._run_phase(phase, fn)
            await self._finish_completed()
        except PhaseFailure as e:
            await self._finish_failed(e)
        finally:
            self.store.remove(self.session.id)
            self.channel.close()

    def start(self, files: Sequence[UploadedFile]) -> asyncio.Task:
        """Schedules execute() on the running loop and returns the task."""
        if not files:
            self.store.remove(self.session.id)
            self.channel.close()
            raise ValueError("at least one file is required")
        task = asyncio.get_running_loop().create_task(self.execute(files))
        _BACKGROUND_TASKS.add(task)
        task.add_done_callback(_BACKGROUND_TASKS.discard)
        return task

    def resume(self, answers: Iterable[ClarificationAnswer]) -> bool:
        """
        Hands answers to a paused Clarify phase. No-op (False) unless the
        session is currently paused_for_clarification.
        """
        if self.session.status != "paused_for_clarification":
            return False
        fut = self._resume
        if fut is None or fut.done():
            return False
        fut.set_result(list(answers))
        return True

    # ------------------------------------------------------------------
    # sequencing
    # ------------------------------------------------------------------

    def _emit(self, event_type: str, data: dict) -> None:
        self.channel.publish(event_type, data)

    def _progress(self, phase: str, percent: int, message: str) -> None:
        self._emit("phase_progress", {"phase": phase, "percent": int(percent), "message": message})

    async def _snapshot(self) -> None:
        self.session.touch()
        # persistence never stops the run, whatever sink is plugged in
        try:
            await self.collab.snapshots.save(self.session)
        except Exception:
            log.warning(
                "snapshot_failed",
                exc_info=True,
                extra={"session_id": self.session.id, "phase": self.session.current_phase},
            )

    async def _run_phase(self, phase: str, fn: PhaseFn) -> None:
        record = self.session.phases[phase]
        self.session.current_phase = phase
        record.start()

        label, description = PHASE_LABELS[phase]
        self._emit("phase_started", {"phase": phase, "label": label, "description": description})
        log.info("phase_started", extra={"session_id": self.session.id, "phase": phase})

        try:
            outcome = await fn(self)
        except PhaseFailure as e:
            record.finish("failed", str(e))
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            record.finish("failed", message)
            raise PhaseFailure(phase, message, e) from e

        record.finish(outcome.status, outcome.summary)
        self._emit(
            "phase_completed",
            {
                "phase": phase,
                "status": outcome.status,
                "summary": outcome.summary,
                "durationMs": record.duration_ms,
            },
        )
        log.info("phase_completed", extra={"session_id": self.session.id, "phase": phase})
        await self._snapshot()

    def _duration_ms(self) -> int:
        if self._started_at is None:
            return 0
        return int((time.monotonic() - self._started_at) * 1000)

    async def _finish_completed(self) -> None:
        if self.session.is_terminal:
            return
        self.session.status = "completed"
        self.session.completed_at = utcnow()
        await self._snapshot()
        METRICS.inc("pipelines_completed")

        self._emit(
            "pipeline_complete",
            {
                "dealId": self.session.deal_id,
                "summary": self.session.synthesis.as_dict() if self.session.synthesis else None,
                "durationMs": self._duration_ms(),
            },
        )
        log.info("pipeline_completed", extra={"session_id": self.session.id, "deal_id": self.session.deal_id})

    async def _finish_failed(self, failure: PhaseFailure) -> None:
        if self.session.is_terminal:
            return
        cause = failure.original_error
        error = str(cause) if cause is not None and str(cause) else str(failure)

        self.session.status = "failed"
        self.session.error = error
        self.session.completed_at = utcnow()
        await self._snapshot()
        METRICS.inc("pipelines_failed")

        log.error(
            "pipeline_failed",
            exc_info=(type(cause), cause, cause.__traceback__) if cause is not None else None,
            extra={"session_id": self.session.id, "phase": failure.phase},
        )
        self._emit("pipeline_error", {"phase": failure.phase, "error": error})

    def _raise_flags(self, flags: Iterable[RedFlag]) -> None:
        for flag in flags:
            self.session.red_flags.append(flag)
            self._emit(
                "red_flag",
                {
                    "id": flag.id,
                    "severity": flag.severity,
                    "category": flag.category,
                    "message": flag.message,
                    "phase": flag.phase,
                },
            )

    # ------------------------------------------------------------------
    # phase 1: ingest
    # ------------------------------------------------------------------

    async def _parse_one(self, upload: UploadedFile) -> ParsedFile:
        try:
            content = await asyncio.to_thread(self.collab.read_file, upload)
            doc_type = self.collab.classify(content.text, upload.filename)
        except Exception as e:
            failure = e if isinstance(e, FileParseFailure) else FileParseFailure(upload.filename, str(e) or type(e).__name__, e)
            METRICS.inc("files_failed")
            log.warning(
                "file_parse_failed",
                exc_info=True,
                extra={"session_id": self.session.id, "phase": "ingest", "upload_filename": upload.filename},
            )
            return ParsedFile(
                filename=upload.filename,
                media_type=upload.media_type,
                size_bytes=len(upload.content),
                document_type="unknown",
                raw_text="",
                summary=f"Failed to parse: {failure}",
                confidence=0.0,
                error=str(failure),
            )

        summary = f"{doc_type} document"
        findings: tuple[str, ...] = ()
        confidence = ANALYZER_FALLBACK_CONFIDENCE
        analyzer = self.collab.document_analyzer
        if analyzer is not None:
            try:
                result = await analyzer.analyze(text=content.text, document_type=doc_type, filename=upload.filename)
                summary, findings, confidence = result.summary, tuple(result.key_findings), float(result.confidence)
            except Exception:
                log.warning(
                    "document_analysis_unavailable",
                    exc_info=True,
                    extra={"session_id": self.session.id, "phase": "ingest", "upload_filename": upload.filename},
                )

        return ParsedFile(
            filename=upload.filename,
            media_type=content.media_type,
            size_bytes=len(upload.content),
            document_type=doc_type,
            raw_text=content.text,
            summary=summary,
            key_findings=findings,
            confidence=confidence,
            page_count=content.page_count,
            tables=content.tables,
        )

    async def _phase_ingest(self) -> PhaseOutcome:
        total = len(self._files)
        done = 0

        async def one(upload: UploadedFile) -> ParsedFile:
            nonlocal done
            parsed = await self._parse_one(upload)
            done += 1
            self._progress("ingest", round(done / total * 100), f"Parsed {upload.filename}")
            self._emit(
                "file_parsed",
                {
                    "filename": parsed.filename,
                    "docType": parsed.document_type,
                    "pageCount": parsed.page_count or 0,
                    "confidence": parsed.confidence,
                    "status": "failed" if parsed.failed else "parsed",
                    "error": parsed.error,
                },
            )
            return parsed

        parsed_files = await asyncio.gather(*(one(u) for u in self._files))
        self.session.files = list(parsed_files)

        completeness = evaluate_completeness(self.session.files)
        self.session.completeness_score = completeness.score
        self.session.missing_documents = list(completeness.missing)
        self._emit("completeness_check", completeness.as_dict())

        failed = sum(1 for f in self.session.files if f.failed)
        summary = f"Parsed {total - failed} of {total} files"
        if failed:
            summary += f" ({failed} failed)"
        return PhaseOutcome(summary)

    # ------------------------------------------------------------------
    # phase 2: extract
    # ------------------------------------------------------------------

    async def _phase_extract(self) -> PhaseOutcome:
        data = self.session.extracted_data
        readable = [f for f in self.session.files if not f.failed and f.raw_text]
        found: list[ExtractedFacility] = []

        for idx, pf in enumerate(readable, start=1):
            self._progress("extract", round(idx / len(readable) * 90), f"Extracting from {pf.filename}")
            found.extend(extract_facilities(pf.raw_text))
            for field_name, value in apply_financial_fields(data, parse_financial_fields(pf.raw_text)):
                self._emit("field_extracted", {"field": field_name, "value": value, "source": pf.filename})

        data.facilities = merge_facilities(list(data.facilities) + found)
        for f in data.facilities:
            self._emit(
                "facility_detected",
                {
                    "name": f.name,
                    "ccn": f.ccn,
                    "state": f.state,
                    "beds": f.licensed_beds,
                    "assetType": f.asset_type,
                    "confidence": f.confidence,
                },
            )

        data.suggested_deal_name = infer_deal_name(data.facilities, self.session.files)
        data.suggested_asset_type = infer_asset_type(data.facilities)
        data.suggested_state = data.primary_state()

        self._raise_flags(detect_red_flags(data, phase="extract", existing=self.session.red_flags))
        return PhaseOutcome(f"Found {len(data.facilities)} facilities")

    # ------------------------------------------------------------------
    # phase 3: clarify
    # ------------------------------------------------------------------

    async def _phase_clarify(self) -> PhaseOutcome:
        data = self.session.extracted_data
        requests = generate_clarifications(data)
        self.session.clarifications = requests
        if not requests:
            return PhaseOutcome("No clarifications needed")

        # parked before the event goes out so an observer can resume right away
        self._resume = asyncio.get_running_loop().create_future()
        self.session.status = "paused_for_clarification"
        METRICS.inc("pipelines_paused")
        log.info("pipeline_paused", extra={"session_id": self.session.id, "phase": "clarify"})

        self._emit(
            "clarification_needed",
            {"clarifications": [c.as_dict() for c in requests], "count": len(requests)},
        )
        await self._snapshot()

        try:
            answers = await self._resume
        finally:
            self._resume = None
        self.session.status = "running"

        normalized = normalize_answers(requests, answers)
        self.session.clarification_answers = normalized
        applied = apply_answers(data, requests, normalized)

        if "dealName" not in applied and any(a.startswith("facility.") for a in applied):
            data.suggested_deal_name = infer_deal_name(data.facilities, self.session.files)

        self._raise_flags(detect_red_flags(data, phase="clarify", existing=self.session.red_flags))

        skipped = sum(1 for a in normalized if a.action == "skip")
        self._emit(
            "clarifications_resolved",
            {"count": len(normalized), "applied": applied, "skipped": skipped},
        )
        return PhaseOutcome(f"Resolved {len(normalized)} clarifications")

    # ------------------------------------------------------------------
    # phase 4: assemble
    # ------------------------------------------------------------------

    async def _match_facility(self, facility: ExtractedFacility) -> None:
        matcher = self.collab.facility_matcher
        if matcher is None:
            return
        try:
            match = await matcher.match(facility)
        except Exception:
            log.warning(
                "cms_match_failed",
                exc_info=True,
                extra={"session_id": self.session.id, "phase": "assemble"},
            )
            return
        if match is None:
            return

        facility.cms_data = match
        if not facility.ccn:
            facility.ccn = match.provider_number
        if not facility.certified_beds:
            facility.certified_beds = match.total_beds

        self._emit(
            "cms_matched",
            {
                "facilityName": facility.name,
                "providerNumber": match.provider_number,
                "stars": match.overall_rating or 0,
                "beds": match.total_beds,
                "confidence": match.match_confidence,
            },
        )
        self._raise_flags(registry_flags(facility, match, existing=self.session.red_flags))

    async def _phase_assemble(self) -> PhaseOutcome:
        data = self.session.extracted_data

        if data.facilities and self.collab.facility_matcher is not None:
            self._progress("assemble", 20, "Matching facilities against CMS...")
            await asyncio.gather(*(self._match_facility(f) for f in data.facilities))

        self._progress("assemble", 60, "Creating deal record...")
        record = await self.collab.deal_writer.create_deal(
            session_id=self.session.id, data=data, files=self.session.files
        )
        self.session.deal_id = record.deal_id
        self.session.facility_ids = list(record.facility_ids)

        self._emit(
            "deal_created",
            {
                "dealId": record.deal_id,
                "dealName": data.suggested_deal_name,
                "assetType": data.suggested_asset_type,
                "facilityCount": len(data.facilities),
                "beds": data.total_beds(),
            },
        )
        return PhaseOutcome(f"Created deal with {len(record.facility_ids)} facilities")

    # ------------------------------------------------------------------
    # phase 5: analyze
    # ------------------------------------------------------------------

    async def _phase_analyze(self) -> PhaseOutcome:
        if not self.session.deal_id:
            return PhaseOutcome("Skipped: no deal created", status="skipped")

        data = self.session.extracted_data
        market: Optional[str] = None
        if self.collab.summarizer is not None:
            self._progress("analyze", 20, "Gathering market intelligence...")
            try:
                market = await self.collab.summarizer.market_context(
                    asset_type=data.suggested_asset_type, state=data.primary_state()
                )
            except Exception:
                log.warning(
                    "market_intelligence_unavailable",
                    exc_info=True,
                    extra={"session_id": self.session.id, "phase": "analyze"},
                )

        self._progress("analyze", 50, "Running analysis engine...")
        try:
            analysis = await self.collab.deal_analyzer.analyze(
                data=data,
                red_flags=list(self.session.red_flags),
                completeness_score=self.session.completeness_score,
                market_context=market,
            )
        except Exception:
            log.warning(
                "analysis_unavailable",
                exc_info=True,
                extra={"session_id": self.session.id, "phase": "analyze"},
            )
            self._progress("analyze", 100, "Analysis engine unavailable; continuing with extracted data")
            return PhaseOutcome("Analysis unavailable")

        self.session.analysis_result = analysis
        try:
            await self.collab.deal_writer.mark_reviewed(self.session.deal_id, analysis)
        except Exception:
            log.warning(
                "deal_review_write_failed",
                exc_info=True,
                extra={"session_id": self.session.id, "phase": "analyze", "deal_id": self.session.deal_id},
            )

        self._emit(
            "analysis_complete",
            {
                "score": analysis.confidence_score,
                "thesis": analysis.thesis,
                "valuationRange": analysis.valuation_range.as_dict() if analysis.valuation_range else None,
                "riskCount": len(analysis.risk_factors),
            },
        )
        return PhaseOutcome("Analysis complete")

    # ------------------------------------------------------------------
    # phase 6: tools
    # ------------------------------------------------------------------

    async def _phase_tools(self) -> PhaseOutcome:
        inputs = ToolInputs.from_deal_data(self.session.extracted_data)
        self._progress("tools", 10, "Running financial tools...")

        def on_result(r: ToolResult) -> None:
            payload = {"toolName": r.tool_name, "toolLabel": r.tool_label, "status": r.status, "reason": r.reason}
            payload.update(r.result or {})
            self._emit("tool_executed", payload)

        results = await self.collab.tool_runner.run(inputs, on_result=on_result, session_id=self.session.id)
        self.session.tool_results = list(results)

        ok = sum(1 for r in results if r.status == "success")
        return PhaseOutcome(f"Executed {ok} tools")

    # ------------------------------------------------------------------
    # phase 7: synthesize
    # ------------------------------------------------------------------

    async def _phase_synthesize(self) -> PhaseOutcome:
        data = self.session.extracted_data
        synthesis = build_synthesis(
            data=data,
            analysis=self.session.analysis_result,
            tools=self.session.tool_results,
            red_flags=self.session.red_flags,
            completeness_score=self.session.completeness_score,
            missing_documents=self.session.missing_documents,
        )

        if self.collab.summarizer is not None:
            self._progress("synthesize", 50, "Writing executive summary...")
            try:
                synthesis.executive_summary = await self.collab.summarizer.executive_summary(
                    executive_summary_prompt(synthesis, data)
                )
            except Exception:
                log.warning(
                    "executive_summary_unavailable",
                    exc_info=True,
                    extra={"session_id": self.session.id, "phase": "synthesize"},
                )

        self.session.synthesis = synthesis
        return PhaseOutcome(f"Score: {synthesis.deal_score:.0f}, Recommendation: {synthesis.recommendation}")


PHASE_SEQUENCE: tuple[tuple[str, PhaseFn], ...] = (
    ("ingest", SmartIntakePipeline._phase_ingest),
    ("extract", SmartIntakePipeline._phase_extract),
    ("clarify", SmartIntakePipeline._phase_clarify),
    ("assemble", SmartIntakePipeline._phase_assemble),
    ("analyze", SmartIntakePipeline._phase_analyze),
    ("tools", SmartIntakePipeline._phase_tools),
    ("synthesize", SmartIntakePipeline._phase_synthesize),
)
