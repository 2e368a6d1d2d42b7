# tests/test_clarifications.py
from __future__ import annotations

import pytest

from smart_intake.domain.clarifications import apply_answers, generate_clarifications, normalize_answers
from smart_intake.domain.pipeline_types import (
    ClarificationAnswer,
    ClarificationRequest,
    ExtractedDealData,
    ExtractedFacility,
    ExtractedFinancials,
)


def test_no_facilities_and_no_financials_raise_two_missing_questions():
    reqs = generate_clarifications(ExtractedDealData())
    assert [(r.field, r.type, r.priority) for r in reqs] == [
        ("dealName", "missing", 10),
        ("noi", "missing", 9),
    ]
    assert reqs[0].field_label == "Deal Name"


def test_clean_record_needs_no_clarification():
    data = ExtractedDealData(
        facilities=[ExtractedFacility(name="Maple Grove Manor", confidence=60)],
        financials=ExtractedFinancials(total_revenue=1_200_000, noi=180_000),
    )
    assert generate_clarifications(data) == []


def test_out_of_range_margin_carries_benchmark():
    data = ExtractedDealData(
        facilities=[ExtractedFacility(name="Maple Grove Manor", confidence=60)],
        financials=ExtractedFinancials(total_revenue=1_000_000, noi=400_000),
    )
    (req,) = generate_clarifications(data)
    assert req.type == "out_of_range"
    assert req.priority == 8
    assert req.benchmark_range.as_dict() == {"min": 0.02, "max": 0.30, "median": 0.15}


def test_requests_sorted_by_priority_descending():
    data = ExtractedDealData(
        facilities=[ExtractedFacility(name="Cedar Home", confidence=40)],
        financials=ExtractedFinancials(total_revenue=1_000_000, noi=10_000),
    )
    reqs = generate_clarifications(data)
    assert [r.priority for r in reqs] == [8, 7]
    assert reqs[1].field == "facility.Cedar Home"


def test_empty_answers_normalize_to_skip_for_every_request():
    reqs = generate_clarifications(ExtractedDealData())
    answers = normalize_answers(reqs, [])
    assert [(a.clarification_id, a.action) for a in answers] == [(r.id, "skip") for r in reqs]


def test_last_answer_wins_and_unknown_ids_dropped():
    reqs = generate_clarifications(ExtractedDealData())
    answers = normalize_answers(
        reqs,
        [
            ClarificationAnswer(reqs[0].id, "override", "First"),
            ClarificationAnswer("nope", "override", "x"),
            ClarificationAnswer(reqs[0].id, "override", "Second"),
        ],
    )
    assert len(answers) == 2
    assert answers[0].value == "Second"
    assert answers[1].action == "skip"


def test_override_deal_name_and_noi():
    data = ExtractedDealData()
    reqs = generate_clarifications(data)
    applied = apply_answers(
        data,
        reqs,
        [
            ClarificationAnswer(reqs[0].id, "override", "Test Portfolio"),
            ClarificationAnswer(reqs[1].id, "override", "$250,000"),
        ],
    )
    assert applied == ["dealName", "noi"]
    assert data.suggested_deal_name == "Test Portfolio"
    assert data.financials.noi == 250_000.0


def test_accept_and_skip_leave_record_untouched():
    data = ExtractedDealData(suggested_deal_name="Original")
    reqs = generate_clarifications(data)
    applied = apply_answers(
        data,
        reqs,
        [ClarificationAnswer(reqs[0].id, "accept", "Ignored"), ClarificationAnswer(reqs[1].id, "skip")],
    )
    assert applied == []
    assert data.suggested_deal_name == "Original"
    assert data.financials.noi is None


def test_facility_override_updates_fields_and_confirms():
    fac = ExtractedFacility(name="Cedar Home", confidence=40)
    data = ExtractedDealData(
        facilities=[fac],
        financials=ExtractedFinancials(total_revenue=1_000_000, noi=150_000),
    )
    (req,) = generate_clarifications(data)
    applied = apply_answers(
        data, [req], [ClarificationAnswer(req.id, "override", {"name": "Cedar Care Home", "beds": "96", "state": "oh"})]
    )
    assert applied == ["facility.Cedar Home"]
    assert (fac.name, fac.licensed_beds, fac.state, fac.confidence) == ("Cedar Care Home", 96, "OH", 100.0)


def test_uncoercible_override_is_ignored():
    data = ExtractedDealData()
    reqs = generate_clarifications(data)
    assert apply_answers(data, reqs, [ClarificationAnswer(reqs[1].id, "override", "n/a")]) == []


def test_answer_rejects_unknown_action():
    with pytest.raises(ValueError):
        ClarificationAnswer("id", "maybe")


def test_answer_from_dict_accepts_camel_case():
    a = ClarificationAnswer.from_dict({"clarificationId": "abc", "action": "override", "value": 1})
    assert (a.clarification_id, a.action, a.value) == ("abc", "override", 1)


def test_zero_noi_is_not_questioned_as_out_of_range():
    data = ExtractedDealData(
        facilities=[ExtractedFacility(name="Maple Grove Manor", confidence=60)],
        financials=ExtractedFinancials(total_revenue=1_000_000, noi=0),
    )
    assert [r.type for r in generate_clarifications(data)] == []


def test_clarification_type_must_be_known():
    with pytest.raises(ValueError):
        ClarificationRequest(
            id="c1",
            field="noi",
            field_label="Net Operating Income",
            extracted_value=None,
            type="guess",
            reason="r",
            priority=5,
        )
