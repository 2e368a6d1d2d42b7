# smart_intake/domain/synthesis.py
from __future__ import annotations

from typing import Optional, Sequence

from ..config import settings
from .completeness import count_by_severity
from .pipeline_types import (
    AnalysisSummary,
    DealSynthesis,
    ExtractedDealData,
    RedFlag,
    ToolResult,
)

DEFAULT_DEAL_SCORE = 50.0


def derive_recommendation(red_flags: Sequence[RedFlag], confidence_score: Optional[float]) -> str:
    """
    >= pass_critical_flag_count critical flags -> pass
    no critical flags and confidence > pursue_confidence_min -> pursue
    anything else -> conditional
    """
    critical = count_by_severity(red_flags)["critical"]
    if critical >= settings.pass_critical_flag_count:
        return "pass"
    if critical == 0 and float(confidence_score or 0) > settings.pursue_confidence_min:
        return "pursue"
    return "conditional"


def _tool(tools: Sequence[ToolResult], name: str) -> Optional[ToolResult]:
    for t in tools:
        if t.tool_name == name and t.status == "success":
            return t
    return None


def _key_strengths(
    data: ExtractedDealData,
    red_flags: Sequence[RedFlag],
    tools: Sequence[ToolResult],
    completeness_score: int,
) -> list[str]:
    out: list[str] = []
    margin = data.financials.noi_margin()
    if margin is not None and settings.noi_margin_low <= margin <= settings.noi_margin_high:
        out.append(f"NOI margin of {margin * 100:.1f}% is within the typical range")

    ds = _tool(tools, "debt_service")
    if ds is not None and (ds.result or {}).get("isHealthy"):
        out.append(f"Debt service coverage of {ds.result['dscr']:.2f}x supports financing")

    cr = _tool(tools, "cap_rate")
    if cr is not None and (cr.result or {}).get("isWithinRange"):
        out.append(f"Cap rate of {cr.result['capRate']:.2f}% is within the market range")

    if completeness_score >= 70:
        out.append(f"Document package is {completeness_score}% complete")

    if not any(f.severity == "critical" for f in red_flags):
        out.append("No critical red flags identified")

    return out


def _next_steps(missing_documents: Sequence[str], recommendation: str) -> list[str]:
    steps = ["Review extracted data in the deal workbench"]
    if missing_documents:
        steps.append(f"Obtain missing: {', '.join(list(missing_documents)[:3])}")
    else:
        steps.append("Upload any supporting documents")
    steps.append("Validate financial assumptions")
    if recommendation == "pursue":
        steps.append("Schedule site visit and management meeting")
    elif recommendation == "pass":
        steps.append("Document pass rationale for the seller")
    return steps


def build_synthesis(
    *,
    data: ExtractedDealData,
    analysis: Optional[AnalysisSummary],
    tools: Sequence[ToolResult],
    red_flags: Sequence[RedFlag],
    completeness_score: int,
    missing_documents: Sequence[str],
) -> DealSynthesis:
    deal_name = data.suggested_deal_name
    score = float(analysis.confidence_score) if analysis is not None else DEFAULT_DEAL_SCORE
    recommendation = derive_recommendation(red_flags, analysis.confidence_score if analysis else None)

    thesis = analysis.thesis if analysis is not None and analysis.thesis else (
        f"{deal_name}: insufficient data for a complete thesis."
    )

    beds = data.total_beds()
    asking = data.financials.asking_price
    cap = _tool(tools, "cap_rate")

    valuation = {
        "askingPrice": asking,
        "estimatedValue": analysis.valuation_range.as_dict() if analysis and analysis.valuation_range else None,
        "capRate": (cap.result or {}).get("capRate") if cap is not None else None,
        "pricePerBed": round(float(asking) / beds) if asking and beds else None,
    }

    tool_summary = [
        {"tool": t.tool_label, "headline": str((t.result or {}).get("headline") or f"{t.tool_label} complete")}
        for t in tools
        if t.status == "success"
    ]

    return DealSynthesis(
        deal_name=deal_name,
        deal_score=score,
        recommendation=recommendation,
        investment_thesis=thesis,
        key_strengths=_key_strengths(data, red_flags, tools, completeness_score),
        key_risks=[f.message for f in red_flags],
        suggested_next_steps=_next_steps(missing_documents, recommendation),
        valuation_summary=valuation,
        tool_summary=tool_summary,
    )


def executive_summary_prompt(synthesis: DealSynthesis, data: ExtractedDealData) -> str:
    asking = synthesis.valuation_summary.get("askingPrice")
    return "\n".join(
        [
            "Generate a 3-paragraph executive summary for this deal:",
            "",
            f"Deal: {synthesis.deal_name}",
            f"Asset Type: {data.suggested_asset_type}",
            f"Score: {synthesis.deal_score:.0f}/100",
            f"Recommendation: {synthesis.recommendation}",
            f"Thesis: {synthesis.investment_thesis}",
            f"Key Risks: {'; '.join(synthesis.key_risks[:5]) or 'none identified'}",
            f"Asking Price: {f'${asking:,.0f}' if asking else 'Undisclosed'}",
            f"Facilities: {len(data.facilities)} ({data.total_beds()} beds)",
            "",
            "Format: Paragraph 1 = opportunity overview. Paragraph 2 = key risks and mitigants. "
            "Paragraph 3 = recommended action.",
        ]
    )
