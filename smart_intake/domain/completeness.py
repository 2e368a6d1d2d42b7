# smart_intake/domain/completeness.py
"""
Completeness scoring + red-flag rules.

Pure functions over the parsed file set and the working ExtractedDealData.
Thresholds are read from settings at call time.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from ..config import settings
from .pipeline_types import CMSMatchData, ExtractedDealData, ExtractedFacility, ParsedFile, RedFlag


@dataclass(frozen=True)
class RequiredDocument:
    doc_type: str
    label: str
    critical: bool


REQUIRED_DOCUMENTS: tuple[RequiredDocument, ...] = (
    RequiredDocument("income_statement", "P&L / Income Statement", True),
    RequiredDocument("census_report", "Census / Occupancy Report", True),
    RequiredDocument("broker_package", "Broker Package / OM", False),
    RequiredDocument("survey_history", "Survey History", False),
    RequiredDocument("rent_roll", "Rent Roll / Payer Detail", False),
    RequiredDocument("capex_history", "Capital Expenditure History", False),
    RequiredDocument("staffing_report", "Staffing / Payroll Report", False),
)


@dataclass(frozen=True)
class CompletenessResult:
    score: int
    missing: list[str]
    found_count: int
    total_required: int
    critical_missing: list[str]

    def as_dict(self) -> dict:
        return {
            "score": self.score,
            "missing": list(self.missing),
            "foundCount": self.found_count,
            "totalRequired": self.total_required,
            "criticalMissing": list(self.critical_missing),
        }


def missing_critical_documents(files: Sequence[ParsedFile]) -> list[str]:
    present = {f.document_type for f in files}
    return [d.label for d in REQUIRED_DOCUMENTS if d.critical and d.doc_type not in present]


def evaluate_completeness(files: Sequence[ParsedFile]) -> CompletenessResult:
    present = {f.document_type for f in files}
    found = [d for d in REQUIRED_DOCUMENTS if d.doc_type in present]
    missing = [d.label for d in REQUIRED_DOCUMENTS if d.doc_type not in present]
    total = len(REQUIRED_DOCUMENTS)
    score = int(round(len(found) / total * 100)) if total else 100
    return CompletenessResult(
        score=score,
        missing=missing,
        found_count=len(found),
        total_required=total,
        critical_missing=missing_critical_documents(files),
    )


def _flag(*, severity: str, category: str, message: str, phase: str, rule: str, detail: Optional[str] = None) -> RedFlag:
    return RedFlag(
        id=str(uuid.uuid4()),
        severity=severity,
        category=category,
        message=message,
        phase=phase,
        rule=rule,
        detail=detail,
    )


def _pct(x: float, digits: int = 1) -> str:
    return f"{x * 100:.{digits}f}%"


def _agency_ratio(data: ExtractedDealData) -> Optional[float]:
    fin = data.financials
    if fin.agency_labor and fin.nursing_labor:
        return float(fin.agency_labor) / float(fin.nursing_labor)
    if data.operating_metrics.agency_percent:
        return float(data.operating_metrics.agency_percent)
    return None


def detect_red_flags(
    data: ExtractedDealData,
    *,
    phase: str = "extract",
    existing: Iterable[RedFlag] = (),
) -> list[RedFlag]:
    """
    Threshold checks over derived ratios. Returns only flags whose rule has not
    already fired (`existing`), so callers can append the result as-is.
    """
    seen = {f.rule for f in existing}
    fin = data.financials
    ops = data.operating_metrics
    out: list[RedFlag] = []

    def add(flag: RedFlag) -> None:
        if flag.rule not in seen:
            seen.add(flag.rule)
            out.append(flag)

    margin = fin.noi_margin()
    if margin is not None:
        if margin > settings.noi_margin_high:
            add(
                _flag(
                    severity="warning",
                    category="seller_manipulation",
                    message=f"NOI margin of {_pct(margin)} is unusually high; possible seller add-backs",
                    phase=phase,
                    rule="noi_margin_high",
                )
            )
        if margin < settings.noi_margin_low:
            add(
                _flag(
                    severity="critical",
                    category="financial",
                    message=f"NOI margin of {_pct(margin)} is critically low",
                    phase=phase,
                    rule="noi_margin_low",
                )
            )

    if fin.labor_cost and fin.total_revenue:
        labor_ratio = float(fin.labor_cost) / float(fin.total_revenue)
        if labor_ratio < settings.labor_ratio_min:
            add(
                _flag(
                    severity="warning",
                    category="operational",
                    message=f"Labor cost ratio of {_pct(labor_ratio)} is low; possible understaffing",
                    phase=phase,
                    rule="labor_ratio_low",
                )
            )

    agency = _agency_ratio(data)
    if agency is not None and agency > settings.agency_ratio_max:
        add(
            _flag(
                severity="warning",
                category="operational",
                message=f"Agency labor at {_pct(agency)} of nursing labor; staffing instability risk",
                phase=phase,
                rule="agency_ratio_high",
            )
        )

    if ops.occupancy_rate and ops.occupancy_rate < settings.occupancy_min:
        add(
            _flag(
                severity="warning",
                category="operational",
                message=f"Occupancy at {_pct(ops.occupancy_rate)} is below the {_pct(settings.occupancy_min, 0)} threshold",
                phase=phase,
                rule="occupancy_low",
            )
        )

    medicaid = ops.payer_mix.get("medicaid")
    if medicaid and medicaid > settings.medicaid_share_max:
        add(
            _flag(
                severity="warning",
                category="financial",
                message=f"Medicaid payer mix at {_pct(medicaid, 0)}; reimbursement risk",
                phase=phase,
                rule="medicaid_concentration",
            )
        )

    return out


def registry_flags(
    facility: ExtractedFacility,
    match: CMSMatchData,
    *,
    phase: str = "assemble",
    existing: Iterable[RedFlag] = (),
) -> list[RedFlag]:
    """Flags from an external registry match (quality rating, watch list, bed count)."""
    seen = {f.rule for f in existing}
    key = match.provider_number or facility.name
    out: list[RedFlag] = []

    if match.overall_rating is not None and match.overall_rating <= settings.cms_rating_critical_max:
        out.append(
            _flag(
                severity="critical",
                category="regulatory",
                message=f"{facility.name} has CMS {match.overall_rating}-star rating",
                phase=phase,
                rule=f"cms_low_rating:{key}",
            )
        )

    if match.is_sff:
        out.append(
            _flag(
                severity="critical",
                category="regulatory",
                message=f"{facility.name} is on CMS Special Focus Facility list",
                phase=phase,
                rule=f"cms_sff:{key}",
            )
        )

    if facility.licensed_beds and match.total_beds:
        if abs(int(facility.licensed_beds) - int(match.total_beds)) > settings.bed_mismatch_tolerance:
            out.append(
                _flag(
                    severity="warning",
                    category="operational",
                    message=(
                        f"Bed count mismatch: broker says {facility.licensed_beds}, "
                        f"CMS says {match.total_beds}"
                    ),
                    phase=phase,
                    rule=f"bed_mismatch:{key}",
                    detail=facility.name,
                )
            )

    return [f for f in out if f.rule not in seen]


def count_by_severity(flags: Iterable[RedFlag]) -> dict[str, int]:
    counts = {"critical": 0, "warning": 0}
    for f in flags:
        counts[f.severity] = counts.get(f.severity, 0) + 1
    return counts
