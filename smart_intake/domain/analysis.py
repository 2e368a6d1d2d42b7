# smart_intake/domain/analysis.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .pipeline_types import AnalysisSummary, ExtractedDealData, RedFlag, ValuationRange
from .tools import CAP_RATE_BENCHMARKS


@dataclass(frozen=True)
class AnalysisContext:
    deal_name: str
    asset_type: str
    facility_count: int
    beds: int
    noi: Optional[float]
    total_revenue: Optional[float]
    asking_price: Optional[float]
    completeness_score: int
    min_facility_confidence: Optional[float]
    critical_flags: int
    warning_flags: int


@dataclass(frozen=True)
class Scoring:
    score: int
    reasons: List[str]


def build_context(data: ExtractedDealData, red_flags: Sequence[RedFlag], completeness_score: int) -> AnalysisContext:
    fin = data.financials
    confidences = [float(f.confidence or 0) for f in data.facilities]
    return AnalysisContext(
        deal_name=data.suggested_deal_name,
        asset_type=data.suggested_asset_type or "SNF",
        facility_count=len(data.facilities),
        beds=data.total_beds(),
        noi=fin.noi,
        total_revenue=fin.total_revenue,
        asking_price=fin.asking_price,
        completeness_score=int(completeness_score or 0),
        min_facility_confidence=min(confidences) if confidences else None,
        critical_flags=sum(1 for f in red_flags if f.severity == "critical"),
        warning_flags=sum(1 for f in red_flags if f.severity == "warning"),
    )


def score_deal(ctx: AnalysisContext) -> Scoring:
    """
    Deterministic, explainable scoring.
      - starts at 50
      - data coverage (completeness, NOI, price) moves it up
      - red flags and shaky facility extraction move it down
    """
    reasons: list[str] = []
    score = 50.0

    if ctx.completeness_score >= 70:
        score += 10
        reasons.append(f"Document package {ctx.completeness_score}% complete")
    elif ctx.completeness_score < 30:
        score -= 10
        reasons.append(f"Document package only {ctx.completeness_score}% complete")

    if ctx.noi:
        score += 10
        reasons.append("NOI available")
    else:
        score -= 10
        reasons.append("NOI missing")

    if ctx.asking_price:
        score += 5
        reasons.append("Asking price available")

    if ctx.noi and ctx.total_revenue:
        margin = float(ctx.noi) / float(ctx.total_revenue)
        if 0.05 <= margin <= 0.25:
            score += 5
            reasons.append(f"NOI margin {margin * 100:.1f}% within typical band")

    if ctx.facility_count == 0:
        score -= 5
        reasons.append("No facilities identified")
    elif ctx.min_facility_confidence is not None and ctx.min_facility_confidence < 50:
        score -= 5
        reasons.append("Low-confidence facility extraction")

    if ctx.critical_flags:
        score -= 15 * ctx.critical_flags
        reasons.append(f"{ctx.critical_flags} critical red flag(s)")
    if ctx.warning_flags:
        score -= 3 * ctx.warning_flags
        reasons.append(f"{ctx.warning_flags} warning(s)")

    return Scoring(score=int(max(0, min(100, round(score)))), reasons=reasons)


def valuation_range(noi: Optional[float], asset_type: str) -> Optional[ValuationRange]:
    """Direct capitalization at the asset-type benchmark band (high cap -> low value)."""
    if not noi or noi <= 0:
        return None
    b = CAP_RATE_BENCHMARKS.get(asset_type, CAP_RATE_BENCHMARKS["SNF"])
    return ValuationRange(
        low=round(float(noi) / (b["max"] / 100.0)),
        mid=round(float(noi) / (b["median"] / 100.0)),
        high=round(float(noi) / (b["min"] / 100.0)),
    )


def _money(v: Optional[float]) -> str:
    if not v:
        return "n/a"
    if abs(v) >= 1_000_000:
        return f"${v / 1_000_000:.1f}M"
    return f"${v:,.0f}"


def analyze_deal(
    data: ExtractedDealData,
    red_flags: Sequence[RedFlag],
    completeness_score: int,
    *,
    market_context: Optional[str] = None,
) -> AnalysisSummary:
    ctx = build_context(data, red_flags, completeness_score)
    scoring = score_deal(ctx)
    vr = valuation_range(ctx.noi, ctx.asset_type)

    facilities = f"{ctx.facility_count} facilit{'y' if ctx.facility_count == 1 else 'ies'}"
    beds = f", {ctx.beds} beds" if ctx.beds else ""
    thesis = f"{ctx.deal_name}: {ctx.asset_type} opportunity ({facilities}{beds})"
    if ctx.noi and ctx.asking_price:
        thesis += f" priced at {_money(ctx.asking_price)} on {_money(ctx.noi)} NOI"
    thesis += "."

    lines = [thesis]
    if vr is not None:
        lines.append(
            f"Benchmark valuation range {_money(vr.low)} to {_money(vr.high)} (mid {_money(vr.mid)})."
        )
    lines.extend(scoring.reasons)
    if market_context:
        lines.append(market_context.strip())

    return AnalysisSummary(
        confidence_score=float(scoring.score),
        thesis=thesis,
        narrative="\n".join(lines),
        valuation_range=vr,
        risk_factors=[
            {"category": f.category, "severity": f.severity, "description": f.message} for f in red_flags
        ],
        market_context=market_context,
    )
