# tests/test_extraction.py
from __future__ import annotations

from smart_intake.domain.extraction import (
    apply_financial_fields,
    classify_document,
    detect_asset_type,
    extract_facilities,
    facility_key,
    infer_asset_type,
    infer_deal_name,
    merge_facilities,
    parse_financial_fields,
)
from smart_intake.domain.pipeline_types import ExtractedDealData, ExtractedFacility, ParsedFile


def test_classify_by_filename_first():
    assert classify_document("statement of deficiencies", "2024_T12.xlsx") == "income_statement"
    assert classify_document("", "Census Report Q3.pdf") == "census_report"
    assert classify_document("", "Oak_OM_final.pdf") == "broker_package"


def test_classify_by_content():
    assert classify_document("Total revenue and operating expense detail", "a.pdf") == "income_statement"
    assert classify_document("CMS Form 2567 statement of deficiencies", "a.pdf") == "survey_history"
    assert classify_document("nothing useful here", "a.pdf") == "other"


def test_detect_asset_type_keywords():
    assert detect_asset_type("An assisted living community") == "ALF"
    assert detect_asset_type("Independent living campus") == "ILF"
    assert detect_asset_type("Skilled nursing facility") == "SNF"


def test_named_facility_extraction():
    text = "Facility Name: Maple Grove Manor\nLocation: Dayton, OH\n120 licensed beds\nCCN 36-5123"
    (fac,) = extract_facilities(text)
    assert fac.name == "Maple Grove Manor"
    assert fac.state == "OH"
    assert fac.licensed_beds == 120
    assert fac.ccn == "36-5123"
    assert fac.confidence == 60.0


def test_certification_number_only_facility_is_low_confidence():
    facs = extract_facilities("provider 365123 reported 88 beds")
    assert len(facs) == 1
    assert facs[0].ccn == "365123"
    assert facs[0].confidence == 40.0


def test_nothing_extracted_from_plain_financials():
    assert extract_facilities("Income Statement\nTotal Revenue: $1,200,000\nNet Operating Income: $180,000") == []


def test_merge_is_idempotent():
    facs = [
        ExtractedFacility(name="Maple Grove Manor", state="OH", confidence=60),
        ExtractedFacility(name="Cedar Home", ccn="365001", confidence=40),
    ]
    once = merge_facilities(facs)
    twice = merge_facilities(once + once)
    assert [(f.name, f.ccn, f.state, f.confidence) for f in twice] == [
        (f.name, f.ccn, f.state, f.confidence) for f in once
    ]


def test_merge_unions_fields_and_keeps_max_confidence():
    a = ExtractedFacility(name="Maple  Grove Manor", state="OH", confidence=40)
    b = ExtractedFacility(name="maple grove manor", licensed_beds=120, city="Dayton", confidence=60)
    assert facility_key(a) == facility_key(b)

    (m,) = merge_facilities([a, b])
    assert m.name == "maple grove manor"
    assert (m.state, m.licensed_beds, m.city, m.confidence) == ("OH", 120, "Dayton", 60)


def test_infer_deal_name():
    one = [ExtractedFacility(name="Maple Grove Manor")]
    assert infer_deal_name(one) == "Maple Grove Manor"

    shared = [ExtractedFacility(name="Sunrise Oaks Manor"), ExtractedFacility(name="Sunrise Pines Manor")]
    assert infer_deal_name(shared) == "Sunrise Manor Portfolio"

    distinct = [ExtractedFacility(name="Alpha Home"), ExtractedFacility(name="Beta Lodge")]
    assert infer_deal_name(distinct) == "2-Facility Portfolio"

    pf = ParsedFile(
        filename="ohio_snf-deal.pdf", media_type="application/pdf", size_bytes=1,
        document_type="other", raw_text="", summary="",
    )
    assert infer_deal_name([], [pf]) == "ohio snf deal"
    assert infer_deal_name([]) == "New Deal"


def test_infer_asset_type_majority():
    facs = [ExtractedFacility(name="a", asset_type="ALF"), ExtractedFacility(name="b", asset_type="ALF"),
            ExtractedFacility(name="c", asset_type="SNF")]
    assert infer_asset_type(facs) == "ALF"
    assert infer_asset_type([]) == "SNF"


def test_parse_financial_fields():
    text = (
        "Total Revenue: $1,200,000\n"
        "Total Expenses: $1,020,000\n"
        "Net Operating Income: $180,000\n"
        "Asking Price: $2.5M\n"
        "Occupancy: 86.5%\n"
        "Medicaid: 62%\n"
    )
    fields = parse_financial_fields(text)
    assert fields["totalRevenue"] == 1_200_000
    assert fields["totalExpenses"] == 1_020_000
    assert fields["noi"] == 180_000
    assert fields["askingPrice"] == 2_500_000
    assert fields["occupancyRate"] == 0.865
    assert fields["payerMix.medicaid"] == 0.62


def test_first_document_wins_for_financials():
    data = ExtractedDealData()
    first = apply_financial_fields(data, {"noi": 100.0, "totalRevenue": 1000.0})
    second = apply_financial_fields(data, {"noi": 200.0, "laborCost": 500.0})

    assert first == [("noi", 100.0), ("totalRevenue", 1000.0)]
    assert second == [("laborCost", 500.0)]
    assert data.financials.noi == 100.0
    assert data.operating_metrics.labor_cost_ratio == 0.5
