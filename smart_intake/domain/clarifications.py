# smart_intake/domain/clarifications.py
"""
Clarification negotiation.

generate_clarifications() scans the working record and returns prioritized
questions (highest priority first). apply_answers() folds user answers back
into the record through a fixed field -> mutation table.
"""
from __future__ import annotations

import uuid
from typing import Any, Callable, Iterable, Optional, Sequence

from ..config import settings
from .pipeline_types import (
    BenchmarkRange,
    ClarificationAnswer,
    ClarificationRequest,
    ExtractedDealData,
    ExtractedFacility,
)

FACILITY_FIELD_PREFIX = "facility."


def _new_id() -> str:
    return str(uuid.uuid4())


def _to_float(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    s = str(v).strip().replace(",", "").replace("$", "")
    if not s:
        return None
    try:
        return float(s)
    except ValueError:
        return None


def _to_int(v: Any) -> Optional[int]:
    f = _to_float(v)
    return int(round(f)) if f is not None else None


def generate_clarifications(data: ExtractedDealData) -> list[ClarificationRequest]:
    out: list[ClarificationRequest] = []
    fin = data.financials

    if not data.facilities:
        out.append(
            ClarificationRequest(
                id=_new_id(),
                field="dealName",
                field_label="Deal Name",
                extracted_value=data.suggested_deal_name,
                suggested_value=data.suggested_deal_name,
                type="missing",
                reason="No facilities could be extracted from uploaded documents",
                priority=10,
            )
        )

    if not fin.has_anchor():
        out.append(
            ClarificationRequest(
                id=_new_id(),
                field="noi",
                field_label="Net Operating Income",
                extracted_value=None,
                type="missing",
                reason="No financial data found in uploaded documents",
                priority=9,
            )
        )

    floor = settings.facility_confidence_floor
    for f in data.facilities:
        if f.confidence < floor:
            out.append(
                ClarificationRequest(
                    id=_new_id(),
                    field=f"{FACILITY_FIELD_PREFIX}{f.name}",
                    field_label=f"Facility: {f.name}",
                    extracted_value={"name": f.name, "beds": f.licensed_beds, "state": f.state},
                    type="low_confidence",
                    reason=f"Low confidence ({f.confidence:.0f}%) in facility extraction",
                    priority=7,
                    confidence=f.confidence,
                )
            )

    margin = fin.noi_margin()
    if margin is not None:
        lo, hi = settings.noi_margin_band_min, settings.noi_margin_band_max
        if margin < lo or margin > hi:
            out.append(
                ClarificationRequest(
                    id=_new_id(),
                    field="noi",
                    field_label="NOI",
                    extracted_value=fin.noi,
                    benchmark_range=BenchmarkRange(min=lo, max=hi, median=settings.noi_margin_benchmark_median),
                    type="out_of_range",
                    reason=(
                        f"NOI margin of {margin * 100:.1f}% is outside the typical range "
                        f"({lo * 100:.0f}-{hi * 100:.0f}%)"
                    ),
                    priority=8,
                )
            )

    # stable: equal priorities keep generation order
    return sorted(out, key=lambda c: c.priority, reverse=True)


def normalize_answers(
    requests: Sequence[ClarificationRequest],
    answers: Iterable[ClarificationAnswer],
) -> list[ClarificationAnswer]:
    """
    One answer per request, in request order. Unknown ids are dropped,
    unanswered requests become `skip`, the last answer for an id wins.
    """
    by_id: dict[str, ClarificationAnswer] = {}
    known = {r.id for r in requests}
    for a in answers:
        if a.clarification_id in known:
            by_id[a.clarification_id] = a
    return [by_id.get(r.id) or ClarificationAnswer(clarification_id=r.id, action="skip") for r in requests]


# -----------------------------------------------------------------------------
# Field mutations (override)
# -----------------------------------------------------------------------------


def _set_deal_name(data: ExtractedDealData, value: Any) -> bool:
    name = str(value).strip() if value is not None else ""
    if not name:
        return False
    data.suggested_deal_name = name
    return True


def _set_noi(data: ExtractedDealData, value: Any) -> bool:
    noi = _to_float(value)
    if noi is None:
        return False
    data.financials.noi = noi
    return True


def _find_facility(data: ExtractedDealData, name: str) -> Optional[ExtractedFacility]:
    for f in data.facilities:
        if f.name == name:
            return f
    return None


def _set_facility(data: ExtractedDealData, field: str, value: Any) -> bool:
    facility = _find_facility(data, field[len(FACILITY_FIELD_PREFIX):])
    if facility is None:
        return False

    if isinstance(value, dict):
        changed = False
        if value.get("name"):
            facility.name = str(value["name"]).strip()
            changed = True
        beds = _to_int(value.get("beds", value.get("licensedBeds")))
        if beds is not None:
            facility.licensed_beds = beds
            changed = True
        if value.get("state"):
            facility.state = str(value["state"]).strip().upper()[:2]
            changed = True
        if value.get("ccn"):
            facility.ccn = str(value["ccn"]).strip()
            changed = True
    else:
        name = str(value).strip() if value is not None else ""
        if not name:
            return False
        facility.name = name
        changed = True

    if changed:
        # user-confirmed
        facility.confidence = 100.0
    return changed


_FIELD_SETTERS: dict[str, Callable[[ExtractedDealData, Any], bool]] = {
    "dealName": _set_deal_name,
    "noi": _set_noi,
}


def apply_answers(
    data: ExtractedDealData,
    requests: Sequence[ClarificationRequest],
    answers: Iterable[ClarificationAnswer],
) -> list[str]:
    """
    Mutates `data` in place. Returns the field paths actually written.
    skip/accept leave the record untouched; override values that cannot be
    coerced to the field's type are ignored.
    """
    by_id = {r.id: r for r in requests}
    applied: list[str] = []

    for answer in answers:
        if answer.action != "override" or answer.value is None:
            continue
        req = by_id.get(answer.clarification_id)
        if req is None:
            continue

        if req.field.startswith(FACILITY_FIELD_PREFIX):
            ok = _set_facility(data, req.field, answer.value)
        else:
            setter = _FIELD_SETTERS.get(req.field)
            ok = setter(data, answer.value) if setter else False

        if ok:
            applied.append(req.field)

    return applied
