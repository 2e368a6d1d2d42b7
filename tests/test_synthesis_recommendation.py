# tests/test_synthesis_recommendation.py
from __future__ import annotations

import pytest

from smart_intake.domain.analysis import analyze_deal
from smart_intake.domain.pipeline_types import (
    ExtractedDealData,
    ExtractedFacility,
    ExtractedFinancials,
    RedFlag,
    ToolResult,
)
from smart_intake.domain.synthesis import build_synthesis, derive_recommendation, executive_summary_prompt


def _flag(severity: str, n: int = 0) -> RedFlag:
    return RedFlag(
        id=f"f{n}", severity=severity, category="financial", message=f"flag {n}", phase="extract", rule=f"r{n}"
    )


@pytest.mark.parametrize(
    "criticals,warnings,confidence,expected",
    [
        (3, 0, 95.0, "pass"),
        (4, 2, 10.0, "pass"),
        (0, 0, 71.0, "pursue"),
        (0, 5, 90.0, "pursue"),
        (0, 0, 70.0, "conditional"),
        (1, 0, 99.0, "conditional"),
        (2, 0, None, "conditional"),
    ],
)
def test_recommendation_rule(criticals, warnings, confidence, expected):
    flags = [_flag("critical", i) for i in range(criticals)] + [_flag("warning", 100 + i) for i in range(warnings)]
    assert derive_recommendation(flags, confidence) == expected


def test_synthesis_without_analysis_falls_back_to_rule_based_thesis():
    data = ExtractedDealData(suggested_deal_name="Test Portfolio")
    syn = build_synthesis(
        data=data, analysis=None, tools=[], red_flags=[], completeness_score=14,
        missing_documents=["Census / Occupancy Report", "Survey History", "Rent Roll / Payer Detail", "Staffing"],
    )
    assert syn.deal_name == "Test Portfolio"
    assert syn.deal_score == 50.0
    assert syn.recommendation == "conditional"
    assert syn.investment_thesis.startswith("Test Portfolio")
    assert "Obtain missing: Census / Occupancy Report, Survey History, Rent Roll / Payer Detail" in (
        syn.suggested_next_steps
    )
    assert syn.executive_summary is None


def test_synthesis_uses_analysis_and_tools():
    data = ExtractedDealData(
        suggested_deal_name="Maple Grove Manor",
        facilities=[ExtractedFacility(name="Maple Grove Manor", licensed_beds=100, confidence=60)],
        financials=ExtractedFinancials(total_revenue=6_000_000, noi=900_000, asking_price=9_000_000),
    )
    analysis = analyze_deal(data, [], 57)
    cap = ToolResult(
        tool_name="cap_rate", tool_label="Cap Rate Calculator", status="success",
        result={"capRate": 10.0, "isWithinRange": True, "headline": "Cap rate: 10.00% (within SNF range)"},
    )
    skipped = ToolResult(tool_name="pro_forma", tool_label="Pro Forma Projection", status="skipped", reason="x")

    syn = build_synthesis(
        data=data, analysis=analysis, tools=[cap, skipped], red_flags=[], completeness_score=57, missing_documents=[]
    )

    assert syn.investment_thesis.startswith("Maple Grove Manor")
    assert syn.deal_score == analysis.confidence_score
    assert syn.valuation_summary["capRate"] == 10.0
    assert syn.valuation_summary["pricePerBed"] == 90_000
    assert syn.tool_summary == [{"tool": "Cap Rate Calculator", "headline": "Cap rate: 10.00% (within SNF range)"}]
    assert "No critical red flags identified" in syn.key_strengths

    prompt = executive_summary_prompt(syn, data)
    assert "Deal: Maple Grove Manor" in prompt


def test_critical_flags_lower_analysis_score():
    data = ExtractedDealData(financials=ExtractedFinancials(total_revenue=1_000_000, noi=150_000))
    clean = analyze_deal(data, [], 50).confidence_score
    flagged = analyze_deal(data, [_flag("critical", 1)], 50).confidence_score
    assert flagged < clean
    assert 0 <= flagged <= 100
