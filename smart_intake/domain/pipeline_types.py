# smart_intake/domain/pipeline_types.py
"""
Data model for the 7-phase smart intake pipeline:

    ingest -> extract -> clarify -> assemble -> analyze -> tools -> synthesize

Everything here is plain dataclasses. Wire/snapshot serialization is explicit
(`as_dict`) and camelCase, matching the event stream format.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


PHASES: tuple[str, ...] = ("ingest", "extract", "clarify", "assemble", "analyze", "tools", "synthesize")

PHASE_LABELS: dict[str, tuple[str, str]] = {
    "ingest": ("Ingest", "Parsing documents"),
    "extract": ("Extract", "AI data extraction"),
    "clarify": ("Clarify", "Resolving questions"),
    "assemble": ("Assemble", "Building deal record"),
    "analyze": ("Analyze", "Running analysis engine"),
    "tools": ("Tools", "Executing financial tools"),
    "synthesize": ("Synthesize", "Generating synthesis"),
}

TERMINAL_STATUSES = frozenset({"completed", "failed"})
PHASE_STATUSES = frozenset({"pending", "running", "completed", "failed", "skipped"})

CLARIFICATION_TYPES = frozenset({"low_confidence", "out_of_range", "conflict", "missing", "validation_error"})
CLARIFICATION_ACTIONS = frozenset({"accept", "override", "skip"})

RED_FLAG_SEVERITIES = frozenset({"critical", "warning"})
RED_FLAG_CATEGORIES = frozenset({"financial", "regulatory", "operational", "seller_manipulation"})

TOOL_STATUSES = frozenset({"success", "skipped", "failed"})

EVENT_TYPES: tuple[str, ...] = (
    "pipeline_started",
    "phase_started",
    "phase_progress",
    "phase_completed",
    "file_parsed",
    "field_extracted",
    "facility_detected",
    "cms_matched",
    "completeness_check",
    "red_flag",
    "clarification_needed",
    "clarifications_resolved",
    "deal_created",
    "analysis_complete",
    "tool_executed",
    "pipeline_complete",
    "pipeline_error",
    "heartbeat",
)
TERMINAL_EVENT_TYPES = frozenset({"pipeline_complete", "pipeline_error"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


# -----------------------------------------------------------------------------
# Phase records
# -----------------------------------------------------------------------------


@dataclass
class PhaseRecord:
    phase: str
    status: str = "pending"  # pending|running|completed|failed|skipped
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    summary: Optional[str] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at is None:
            return None
        end = self.completed_at or utcnow()
        return int((end - self.started_at).total_seconds() * 1000)

    def start(self) -> None:
        self.status = "running"
        self.started_at = utcnow()
        self.completed_at = None
        self.summary = None

    def finish(self, status: str, summary: str) -> None:
        if self.status != "running":
            raise ValueError(f"phase {self.phase} is {self.status}, not running")
        if status not in PHASE_STATUSES or status in ("pending", "running"):
            raise ValueError(f"invalid terminal phase status: {status!r}")
        self.status = status
        self.completed_at = utcnow()
        self.summary = summary

    def as_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "status": self.status,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "durationMs": self.duration_ms,
            "summary": self.summary,
        }


# -----------------------------------------------------------------------------
# Ingest
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content: bytes
    media_type: str = "application/octet-stream"


@dataclass(frozen=True)
class ParsedFile:
    filename: str
    media_type: str
    size_bytes: int
    document_type: str
    raw_text: str
    summary: str
    key_findings: tuple[str, ...] = ()
    confidence: float = 0.0
    page_count: Optional[int] = None
    tables: Optional[dict[str, list[list[Any]]]] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def metadata(self) -> dict[str, Any]:
        """Snapshot-safe view (no raw text / tables)."""
        return {
            "filename": self.filename,
            "mediaType": self.media_type,
            "sizeBytes": self.size_bytes,
            "documentType": self.document_type,
            "pageCount": self.page_count,
            "summary": self.summary,
            "keyFindings": list(self.key_findings),
            "confidence": self.confidence,
            "error": self.error,
        }


# -----------------------------------------------------------------------------
# Extract
# -----------------------------------------------------------------------------


@dataclass
class CMSMatchData:
    provider_number: str
    overall_rating: Optional[int] = None
    health_inspection_rating: Optional[int] = None
    staffing_rating: Optional[int] = None
    quality_rating: Optional[int] = None
    is_sff: bool = False
    total_beds: Optional[int] = None
    city: Optional[str] = None
    state: Optional[str] = None
    match_confidence: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "providerNumber": self.provider_number,
            "overallRating": self.overall_rating,
            "healthInspectionRating": self.health_inspection_rating,
            "staffingRating": self.staffing_rating,
            "qualityRating": self.quality_rating,
            "isSff": self.is_sff,
            "totalBeds": self.total_beds,
            "city": self.city,
            "state": self.state,
            "matchConfidence": self.match_confidence,
        }


@dataclass
class ExtractedFacility:
    name: str
    asset_type: str = "SNF"
    ccn: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    licensed_beds: Optional[int] = None
    certified_beds: Optional[int] = None
    year_built: Optional[int] = None
    confidence: float = 0.0
    cms_data: Optional[CMSMatchData] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "ccn": self.ccn,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "assetType": self.asset_type,
            "licensedBeds": self.licensed_beds,
            "certifiedBeds": self.certified_beds,
            "yearBuilt": self.year_built,
            "confidence": self.confidence,
            "cmsData": self.cms_data.as_dict() if self.cms_data else None,
        }


@dataclass
class FinancialPeriod:
    label: str
    revenue: float
    expenses: float
    noi: float
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    occupancy: Optional[float] = None
    confidence: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "revenue": self.revenue,
            "expenses": self.expenses,
            "noi": self.noi,
            "occupancy": self.occupancy,
            "confidence": self.confidence,
        }


@dataclass
class ExtractedFinancials:
    total_revenue: Optional[float] = None
    total_expenses: Optional[float] = None
    noi: Optional[float] = None
    ebitda: Optional[float] = None
    ebitdar: Optional[float] = None
    labor_cost: Optional[float] = None
    nursing_labor: Optional[float] = None
    agency_labor: Optional[float] = None
    management_fee: Optional[float] = None
    asking_price: Optional[float] = None
    periods: list[FinancialPeriod] = field(default_factory=list)

    def has_anchor(self) -> bool:
        return bool(self.noi) or bool(self.total_revenue)

    def noi_margin(self) -> Optional[float]:
        # a zero NOI is treated as not reported: no margin, so no margin flag or clarification
        if not self.noi or not self.total_revenue:
            return None
        return float(self.noi) / float(self.total_revenue)

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalRevenue": self.total_revenue,
            "totalExpenses": self.total_expenses,
            "noi": self.noi,
            "ebitda": self.ebitda,
            "ebitdar": self.ebitdar,
            "laborCost": self.labor_cost,
            "nursingLabor": self.nursing_labor,
            "agencyLabor": self.agency_labor,
            "managementFee": self.management_fee,
            "askingPrice": self.asking_price,
            "periods": [p.as_dict() for p in self.periods],
        }


@dataclass
class OperatingMetrics:
    occupancy_rate: Optional[float] = None
    payer_mix: dict[str, float] = field(default_factory=dict)  # medicare|medicaid|private|other -> share
    avg_daily_rate: Optional[float] = None
    hppd: Optional[float] = None
    agency_percent: Optional[float] = None
    labor_cost_ratio: Optional[float] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "occupancyRate": self.occupancy_rate,
            "payerMix": dict(self.payer_mix),
            "avgDailyRate": self.avg_daily_rate,
            "hppd": self.hppd,
            "agencyPercent": self.agency_percent,
            "laborCostRatio": self.labor_cost_ratio,
        }


@dataclass
class ExtractedDealData:
    suggested_deal_name: str = "New Deal"
    suggested_asset_type: str = "SNF"
    suggested_state: Optional[str] = None
    facilities: list[ExtractedFacility] = field(default_factory=list)
    financials: ExtractedFinancials = field(default_factory=ExtractedFinancials)
    operating_metrics: OperatingMetrics = field(default_factory=OperatingMetrics)

    def total_beds(self) -> int:
        return sum(int(f.licensed_beds or 0) for f in self.facilities)

    def primary_state(self) -> Optional[str]:
        if self.facilities and self.facilities[0].state:
            return self.facilities[0].state
        return self.suggested_state

    def as_dict(self) -> dict[str, Any]:
        return {
            "suggestedDealName": self.suggested_deal_name,
            "suggestedAssetType": self.suggested_asset_type,
            "suggestedState": self.suggested_state,
            "facilities": [f.as_dict() for f in self.facilities],
            "financials": self.financials.as_dict(),
            "operatingMetrics": self.operating_metrics.as_dict(),
        }


# -----------------------------------------------------------------------------
# Clarify
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class BenchmarkRange:
    min: float
    max: float
    median: float

    def as_dict(self) -> dict[str, float]:
        return {"min": self.min, "max": self.max, "median": self.median}


@dataclass(frozen=True)
class ClarificationRequest:
    id: str
    field: str
    field_label: str
    extracted_value: Any
    type: str  # low_confidence|out_of_range|conflict|missing|validation_error
    reason: str
    priority: int  # 0..10, higher = more urgent
    suggested_value: Any = None
    suggested_values: Optional[tuple[Any, ...]] = None
    benchmark_range: Optional[BenchmarkRange] = None
    confidence: Optional[float] = None
    source: Optional[str] = None

    def __post_init__(self) -> None:
        if self.type not in CLARIFICATION_TYPES:
            raise ValueError(f"invalid clarification type: {self.type!r}")

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "field": self.field,
            "fieldLabel": self.field_label,
            "extractedValue": self.extracted_value,
            "suggestedValue": self.suggested_value,
            "suggestedValues": list(self.suggested_values) if self.suggested_values is not None else None,
            "benchmarkRange": self.benchmark_range.as_dict() if self.benchmark_range else None,
            "type": self.type,
            "reason": self.reason,
            "priority": self.priority,
            "confidence": self.confidence,
            "source": self.source,
        }


@dataclass(frozen=True)
class ClarificationAnswer:
    clarification_id: str
    action: str  # accept|override|skip
    value: Any = None

    def __post_init__(self) -> None:
        if self.action not in CLARIFICATION_ACTIONS:
            raise ValueError(f"invalid clarification action: {self.action!r}")

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ClarificationAnswer":
        cid = d.get("clarificationId", d.get("clarification_id"))
        if not cid:
            raise ValueError("clarificationId required")
        return cls(clarification_id=str(cid), action=str(d.get("action") or "skip"), value=d.get("value"))

    def as_dict(self) -> dict[str, Any]:
        return {"clarificationId": self.clarification_id, "action": self.action, "value": self.value}


# -----------------------------------------------------------------------------
# Analyze / Tools / Synthesize
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ValuationRange:
    low: float
    mid: float
    high: float

    def as_dict(self) -> dict[str, float]:
        return {"low": self.low, "mid": self.mid, "high": self.high}


@dataclass
class AnalysisSummary:
    confidence_score: float
    thesis: str
    narrative: str
    valuation_range: Optional[ValuationRange] = None
    risk_factors: list[dict[str, str]] = field(default_factory=list)
    market_context: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "confidenceScore": self.confidence_score,
            "thesis": self.thesis,
            "narrative": self.narrative,
            "valuationRange": self.valuation_range.as_dict() if self.valuation_range else None,
            "riskFactors": list(self.risk_factors),
            "marketContext": self.market_context,
        }


@dataclass(frozen=True)
class ToolResult:
    tool_name: str
    tool_label: str
    status: str  # success|skipped|failed
    result: Optional[dict[str, Any]] = None
    reason: Optional[str] = None

    def __post_init__(self) -> None:
        if self.status not in TOOL_STATUSES:
            raise ValueError(f"invalid tool status: {self.status!r}")

    def as_dict(self) -> dict[str, Any]:
        return {
            "toolName": self.tool_name,
            "toolLabel": self.tool_label,
            "status": self.status,
            "result": self.result,
            "reason": self.reason,
        }


@dataclass
class DealSynthesis:
    deal_name: str
    deal_score: float
    recommendation: str  # pursue|conditional|pass
    investment_thesis: str
    key_strengths: list[str] = field(default_factory=list)
    key_risks: list[str] = field(default_factory=list)
    suggested_next_steps: list[str] = field(default_factory=list)
    valuation_summary: dict[str, Any] = field(default_factory=dict)
    tool_summary: list[dict[str, str]] = field(default_factory=list)
    executive_summary: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "dealName": self.deal_name,
            "dealScore": self.deal_score,
            "recommendation": self.recommendation,
            "investmentThesis": self.investment_thesis,
            "keyStrengths": list(self.key_strengths),
            "keyRisks": list(self.key_risks),
            "suggestedNextSteps": list(self.suggested_next_steps),
            "valuationSummary": dict(self.valuation_summary),
            "toolSummary": list(self.tool_summary),
            "executiveSummary": self.executive_summary,
        }


@dataclass(frozen=True)
class RedFlag:
    id: str
    severity: str  # critical|warning
    category: str  # financial|regulatory|operational|seller_manipulation
    message: str
    phase: str
    rule: str
    detail: Optional[str] = None

    def __post_init__(self) -> None:
        if self.severity not in RED_FLAG_SEVERITIES:
            raise ValueError(f"invalid red flag severity: {self.severity!r}")
        if self.category not in RED_FLAG_CATEGORIES:
            raise ValueError(f"invalid red flag category: {self.category!r}")

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity,
            "category": self.category,
            "message": self.message,
            "detail": self.detail,
            "phase": self.phase,
            "rule": self.rule,
        }


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PipelineEvent:
    type: str
    session_id: str
    timestamp: str
    data: dict[str, Any]

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, "sessionId": self.session_id, "timestamp": self.timestamp, "data": self.data}

    def to_sse(self) -> str:
        body = json.dumps(self.as_dict(), ensure_ascii=False, default=str, separators=(",", ":"))
        return f"event: {self.type}\ndata: {body}\n\n"


def create_pipeline_event(event_type: str, session_id: str, data: dict[str, Any] | None = None) -> PipelineEvent:
    if event_type not in EVENT_TYPES:
        raise ValueError(f"unknown pipeline event type: {event_type!r}")
    return PipelineEvent(type=event_type, session_id=session_id, timestamp=utcnow().isoformat(), data=dict(data or {}))


# -----------------------------------------------------------------------------
# Session (aggregate root)
# -----------------------------------------------------------------------------


@dataclass
class PipelineSession:
    id: str
    status: str = "idle"  # idle|running|paused_for_clarification|completed|failed
    current_phase: str = "ingest"
    phases: dict[str, PhaseRecord] = field(default_factory=lambda: {p: PhaseRecord(phase=p) for p in PHASES})
    files: list[ParsedFile] = field(default_factory=list)
    extracted_data: ExtractedDealData = field(default_factory=ExtractedDealData)
    clarifications: list[ClarificationRequest] = field(default_factory=list)
    clarification_answers: list[ClarificationAnswer] = field(default_factory=list)
    deal_id: Optional[str] = None
    facility_ids: list[str] = field(default_factory=list)
    analysis_result: Optional[AnalysisSummary] = None
    tool_results: list[ToolResult] = field(default_factory=list)
    synthesis: Optional[DealSynthesis] = None
    red_flags: list[RedFlag] = field(default_factory=list)
    completeness_score: int = 0
    missing_documents: list[str] = field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def running_phases(self) -> list[str]:
        return [p for p, rec in self.phases.items() if rec.status == "running"]

    def pending_clarifications(self) -> list[ClarificationRequest]:
        if self.status != "paused_for_clarification":
            return []
        return list(self.clarifications)

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "currentPhase": self.current_phase,
            "phases": {p: rec.as_dict() for p, rec in self.phases.items()},
            "files": [f.metadata() for f in self.files],
            "extractedData": self.extracted_data.as_dict(),
            "clarifications": [c.as_dict() for c in self.clarifications],
            "clarificationAnswers": [a.as_dict() for a in self.clarification_answers],
            "dealId": self.deal_id,
            "facilityIds": list(self.facility_ids),
            "analysisResult": self.analysis_result.as_dict() if self.analysis_result else None,
            "toolResults": [t.as_dict() for t in self.tool_results],
            "synthesis": self.synthesis.as_dict() if self.synthesis else None,
            "redFlags": [f.as_dict() for f in self.red_flags],
            "completenessScore": self.completeness_score,
            "missingDocuments": list(self.missing_documents),
            "error": self.error,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "completedAt": _iso(self.completed_at),
        }
