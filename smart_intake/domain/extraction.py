# smart_intake/domain/extraction.py
"""
Rule-based document classification and field extraction.

Everything here is deterministic text matching; the LLM-backed pieces live in
services/document_analyzer.py.
"""
from __future__ import annotations

import os
import re
from collections import Counter
from dataclasses import replace
from typing import Any, Optional, Sequence

from .pipeline_types import ExtractedDealData, ExtractedFacility, ParsedFile


US_STATES = frozenset(
    {
        "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA", "HI", "ID", "IL", "IN", "IA",
        "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ",
        "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC", "SD", "TN", "TX", "UT", "VT",
        "VA", "WA", "WV", "WI", "WY", "DC",
    }
)

DOCUMENT_TYPES = (
    "income_statement",
    "census_report",
    "broker_package",
    "survey_history",
    "rent_roll",
    "capex_history",
    "staffing_report",
    "cost_report",
    "appraisal",
    "environmental",
    "other",
)

MAX_FACILITIES_PER_FILE = 10
NAMED_FACILITY_CONFIDENCE = 60.0
CCN_ONLY_FACILITY_CONFIDENCE = 40.0


# -----------------------------------------------------------------------------
# Classification
# -----------------------------------------------------------------------------

# (doc_type, any-of keywords); first hit wins
_FILENAME_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("rent_roll", ("rent roll", "rentroll", "rent_roll", "payer detail")),
    ("census_report", ("census", "occupancy")),
    ("staffing_report", ("staffing", "schedule", "payroll")),
    ("survey_history", ("survey", "deficiency", "2567")),
    ("cost_report", ("cost report", "costreport", "cost_report")),
    ("capex_history", ("capex", "capital expenditure", "cap ex")),
    ("income_statement", ("p&l", "pnl", "income statement", "income_statement", "t12", "financials")),
    ("appraisal", ("appraisal",)),
    ("environmental", ("environmental", "phase i", "phase_i", "esa")),
)

_OM_FILENAME = re.compile(r"(?:^|[\s_\-.])(?:om|offering|broker)(?:$|[\s_\-.])", re.IGNORECASE)

_CONTENT_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("rent_roll", ("rent roll", "resident list", "unit number")),
    ("census_report", ("average daily census", "patient days")),
    ("staffing_report", ("hours per patient day", "hppd", "staffing")),
    ("survey_history", ("statement of deficiencies", "deficiency", "cms form 2567", "survey")),
    ("cost_report", ("medicaid cost report", "medicare cost report")),
    ("capex_history", ("capital expenditure", "capex")),
    ("broker_package", ("offering memorandum", "confidential offering", "investment highlights")),
)


def _normalize_filename(filename: str) -> str:
    base = os.path.basename(filename or "")
    stem, _ = os.path.splitext(base)
    return stem.lower().replace("-", " ")


def classify_document(text: str, filename: str) -> str:
    name = _normalize_filename(filename)
    for doc_type, needles in _FILENAME_RULES:
        if any(n in name for n in needles):
            return doc_type
    if _OM_FILENAME.search(name):
        return "broker_package"

    lower = (text or "").lower()
    if (
        "income statement" in lower
        or "profit and loss" in lower
        or "p&l" in lower
        or ("revenue" in lower and "expense" in lower)
    ):
        return "income_statement"
    for doc_type, needles in _CONTENT_RULES:
        if any(n in lower for n in needles):
            return doc_type
    return "other"


# -----------------------------------------------------------------------------
# Facilities
# -----------------------------------------------------------------------------

_CCN_RE = re.compile(r"\b(\d{2}-?\d{4}[A-Z]?)\b")
_BEDS_RE = re.compile(r"\b(\d{1,4})\s*(?:licensed\s*)?beds?\b", re.IGNORECASE)
_STATE_RE = re.compile(r"\b([A-Z]{2})\b")

_NAME_SUFFIXES = "Healthcare|Nursing|Rehabilitation|Care|Center|Home|Living|Lodge|Manor|Village|Estates|Gardens"
_NAME_PATTERNS = (
    re.compile(r"(?i:\b(?:facility|center|home)(?:\s+name)?)\s*:\s*([A-Z][A-Za-z &'-]+)"),
    re.compile(rf"\b([A-Z][A-Za-z&'-]*(?:[ \t]+[A-Z][A-Za-z&'-]*)*?[ \t]+(?:{_NAME_SUFFIXES}))\b"),
)


def detect_asset_type(text: str) -> str:
    lower = f" {(text or '').lower()} "
    asset_type = "SNF"
    if "assisted living" in lower or " alf " in lower:
        asset_type = "ALF"
    if "independent living" in lower or " ilf " in lower:
        asset_type = "ILF"
    if "hospice" in lower:
        asset_type = "HOSPICE"
    return asset_type


def _facility_names(text: str) -> list[str]:
    found: dict[str, None] = {}
    for pattern in _NAME_PATTERNS:
        for m in pattern.finditer(text):
            name = " ".join(m.group(1).split())
            if 3 < len(name) < 100:
                found.setdefault(name, None)
    return list(found)


def extract_facilities(text: str) -> list[ExtractedFacility]:
    """
    Named facilities get confidence 60; when no names are found but
    certification numbers are, one low-confidence facility per number.
    """
    if not text:
        return []

    ccns = _CCN_RE.findall(text)
    states = [s for s in _STATE_RE.findall(text) if s in US_STATES]
    first_state = states[0] if states else None
    bed_match = _BEDS_RE.search(text)
    first_beds = int(bed_match.group(1)) if bed_match else None
    asset_type = detect_asset_type(text)

    names = _facility_names(text)
    out: list[ExtractedFacility] = []

    if names:
        for idx, name in enumerate(names[:MAX_FACILITIES_PER_FILE]):
            out.append(
                ExtractedFacility(
                    name=name,
                    ccn=ccns[idx] if idx < len(ccns) else None,
                    state=states[idx] if idx < len(states) else first_state,
                    asset_type=asset_type,
                    licensed_beds=first_beds,
                    confidence=NAMED_FACILITY_CONFIDENCE,
                )
            )
    elif ccns:
        for idx, ccn in enumerate(ccns[:MAX_FACILITIES_PER_FILE]):
            out.append(
                ExtractedFacility(
                    name=f"Facility {idx + 1} ({ccn})",
                    ccn=ccn,
                    state=first_state,
                    asset_type=asset_type,
                    confidence=CCN_ONLY_FACILITY_CONFIDENCE,
                )
            )

    return out


def facility_key(f: ExtractedFacility) -> str:
    if f.ccn:
        return f.ccn
    return " ".join(f.name.lower().split())


_FILL_FIELDS = (
    "ccn",
    "address",
    "city",
    "state",
    "zip_code",
    "licensed_beds",
    "certified_beds",
    "year_built",
    "cms_data",
)


def _merge_pair(a: ExtractedFacility, b: ExtractedFacility) -> ExtractedFacility:
    primary, other = (b, a) if b.confidence > a.confidence else (a, b)
    fills: dict[str, Any] = {}
    for name in _FILL_FIELDS:
        if not getattr(primary, name) and getattr(other, name):
            fills[name] = getattr(other, name)
    return replace(primary, confidence=max(a.confidence, b.confidence), **fills)


def merge_facilities(facilities: Sequence[ExtractedFacility]) -> list[ExtractedFacility]:
    """
    Deduplicate by certification number, else normalized name. On collision
    the higher-confidence record wins, blanks are filled from the other one
    and confidence is the max. First-seen order is kept.
    """
    merged: dict[str, ExtractedFacility] = {}
    for f in facilities:
        key = facility_key(f)
        cur = merged.get(key)
        merged[key] = replace(f) if cur is None else _merge_pair(cur, f)
    return list(merged.values())


def infer_deal_name(facilities: Sequence[ExtractedFacility], files: Sequence[ParsedFile] = ()) -> str:
    if len(facilities) == 1:
        return facilities[0].name
    if len(facilities) > 1:
        word_sets = [{w.lower() for w in f.name.split()} for f in facilities]
        common = [w for w in facilities[0].name.split() if all(w.lower() in ws for ws in word_sets)]
        if common:
            return f"{' '.join(common)} Portfolio"
        return f"{len(facilities)}-Facility Portfolio"
    if files:
        stem, _ = os.path.splitext(os.path.basename(files[0].filename))
        name = " ".join(re.sub(r"[_-]", " ", stem).split())
        if name:
            return name
    return "New Deal"


def infer_asset_type(facilities: Sequence[ExtractedFacility]) -> str:
    if not facilities:
        return "SNF"
    counts = Counter(f.asset_type for f in facilities)
    return counts.most_common(1)[0][0]


# -----------------------------------------------------------------------------
# Financials / operating metrics
# -----------------------------------------------------------------------------

_MONEY = r"\$?\s*\(?([\d,]+(?:\.\d+)?)\)?"

_FINANCIAL_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("totalRevenue", re.compile(rf"total\s+(?:operating\s+)?revenues?[:\s]*{_MONEY}", re.IGNORECASE)),
    ("totalExpenses", re.compile(rf"total\s+(?:operating\s+)?expenses?[:\s]*{_MONEY}", re.IGNORECASE)),
    ("noi", re.compile(rf"(?:net\s+operating\s+income|\bnoi\b)[:\s]*{_MONEY}", re.IGNORECASE)),
    ("ebitdar", re.compile(rf"\bebitdar\b[:\s]*{_MONEY}", re.IGNORECASE)),
    ("ebitda", re.compile(rf"\bebitda\b(?!r)[:\s]*{_MONEY}", re.IGNORECASE)),
    ("nursingLabor", re.compile(rf"nursing\s+(?:labor|salaries|wages)[:\s]*{_MONEY}", re.IGNORECASE)),
    ("agencyLabor", re.compile(rf"agency\s+(?:labor|staffing|nursing)[:\s]*{_MONEY}", re.IGNORECASE)),
    ("managementFee", re.compile(rf"management\s+fees?[:\s]*{_MONEY}", re.IGNORECASE)),
)

_LABOR_RES = (
    re.compile(rf"total\s+(?:labor|salaries|wages|payroll)[:\s]*{_MONEY}", re.IGNORECASE),
    re.compile(rf"(?:labor|salary|salaries|wages)[:\s]*{_MONEY}", re.IGNORECASE),
)

_PRICE_RE = re.compile(
    r"(?:asking\s+price|purchase\s+price|list\s+price)[:\s]*\$?\s*([\d,]+(?:\.\d+)?)\s*(M\b|MM\b|million)?",
    re.IGNORECASE,
)
_OCCUPANCY_RE = re.compile(r"occupancy(?:\s+rate)?[:\s]*([\d.]+)\s*%", re.IGNORECASE)
_PAYER_RE = {
    "medicaid": re.compile(r"medicaid[:\s]*([\d.]+)\s*%", re.IGNORECASE),
    "medicare": re.compile(r"medicare[:\s]*([\d.]+)\s*%", re.IGNORECASE),
    "private": re.compile(r"private(?:\s+pay)?[:\s]*([\d.]+)\s*%", re.IGNORECASE),
}
_HPPD_RE = re.compile(r"(?:hppd|hours\s+per\s+patient\s+day)[:\s]*([\d.]+)", re.IGNORECASE)

_FIN_ATTRS = {
    "totalRevenue": "total_revenue",
    "totalExpenses": "total_expenses",
    "noi": "noi",
    "ebitda": "ebitda",
    "ebitdar": "ebitdar",
    "laborCost": "labor_cost",
    "nursingLabor": "nursing_labor",
    "agencyLabor": "agency_labor",
    "managementFee": "management_fee",
    "askingPrice": "asking_price",
}


def _money(s: str) -> Optional[float]:
    try:
        return float(s.replace(",", ""))
    except ValueError:
        return None


def _pct(s: str) -> Optional[float]:
    try:
        v = float(s) / 100.0
    except ValueError:
        return None
    return v if 0.0 <= v <= 1.0 else None


def parse_financial_fields(text: str) -> dict[str, float]:
    """All recognizable financial/operating values in one document, keyed by wire field name."""
    found: dict[str, float] = {}
    if not text:
        return found

    for field_name, pattern in _FINANCIAL_PATTERNS:
        m = pattern.search(text)
        if m:
            v = _money(m.group(1))
            if v is not None:
                found[field_name] = v

    for pattern in _LABOR_RES:
        m = pattern.search(text)
        if m:
            v = _money(m.group(1))
            if v is not None:
                found["laborCost"] = v
                break

    m = _PRICE_RE.search(text)
    if m:
        price = _money(m.group(1))
        if price is not None:
            if m.group(2):
                price *= 1_000_000
            found["askingPrice"] = price

    m = _OCCUPANCY_RE.search(text)
    if m:
        occ = _pct(m.group(1))
        if occ is not None:
            found["occupancyRate"] = occ

    for payer, pattern in _PAYER_RE.items():
        m = pattern.search(text)
        if m:
            share = _pct(m.group(1))
            if share is not None:
                found[f"payerMix.{payer}"] = share

    m = _HPPD_RE.search(text)
    if m:
        hppd = _money(m.group(1))
        if hppd is not None:
            found["hppd"] = hppd

    return found


def apply_financial_fields(data: ExtractedDealData, fields: dict[str, float]) -> list[tuple[str, float]]:
    """
    Folds values into the working record without overwriting anything an
    earlier document already supplied. Returns the (field, value) pairs written.
    """
    fin = data.financials
    ops = data.operating_metrics
    written: list[tuple[str, float]] = []

    for key, value in fields.items():
        if key in _FIN_ATTRS:
            attr = _FIN_ATTRS[key]
            if getattr(fin, attr) is None:
                setattr(fin, attr, value)
                written.append((key, value))
        elif key == "occupancyRate":
            if ops.occupancy_rate is None:
                ops.occupancy_rate = value
                written.append((key, value))
        elif key == "hppd":
            if ops.hppd is None:
                ops.hppd = value
                written.append((key, value))
        elif key.startswith("payerMix."):
            payer = key.split(".", 1)[1]
            if payer not in ops.payer_mix:
                ops.payer_mix[payer] = value
                written.append((key, value))

    if fin.total_revenue and fin.labor_cost and ops.labor_cost_ratio is None:
        ops.labor_cost_ratio = float(fin.labor_cost) / float(fin.total_revenue)
    if fin.agency_labor and fin.nursing_labor and ops.agency_percent is None:
        ops.agency_percent = float(fin.agency_labor) / float(fin.nursing_labor)

    return written
